"""Tests for the recognition pipeline."""

from datetime import datetime
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from listenkit.audio.resample import resample as real_resample
from listenkit.errors import ConfigurationError, SourceLoadFailure
from listenkit.recognition.pipeline import RecognitionPipeline, Transaction, TranscriptionResult


class TestTranscriptionResult:
    """Tests for TranscriptionResult dataclass."""

    def test_result_is_immutable(self):
        """Test results cannot be changed after delivery."""
        result = TranscriptionResult(
            transaction_id=1,
            text="hello",
            source="record",
            timestamp=datetime.now(),
            duration_ms=1000,
        )

        with pytest.raises(AttributeError):
            result.text = "changed"


class TestTransaction:
    """Tests for Transaction dataclass."""

    def test_duration_ms(self):
        transaction = Transaction(id=1, samples=np.zeros(8000), sample_rate=16000, source="record")

        assert transaction.duration_ms == 500
        assert not transaction.future.done()


class TestRecognitionPipeline:
    """Tests for RecognitionPipeline class."""

    @pytest.fixture
    def pipeline(self, mock_config, fake_extractor, fake_infer, vocabulary):
        """Create pipeline with fake collaborators."""
        return RecognitionPipeline(mock_config, extractor=fake_extractor, model=fake_infer, vocabulary=vocabulary)

    def test_init(self, pipeline):
        """Test pipeline initialization."""
        assert pipeline.model_name == "sample"
        assert pipeline.target_rate == 16000
        assert not pipeline.is_running()

    def test_init_unknown_model(self, mock_config):
        """Test an unknown configured model fails fast."""
        mock_config.model.name = "unknown"

        with pytest.raises(ConfigurationError):
            RecognitionPipeline(mock_config)

    def test_submit_assigns_increasing_ids(self, pipeline):
        """Test transaction ids are unique and ordered."""
        first = pipeline.submit(np.zeros(100), 16000, "record")
        second = pipeline.submit(np.zeros(100), 16000, "listen")

        assert second.id > first.id
        assert pipeline.pending_ids() == [first.id, second.id]

    def test_process_resolves_future(self, pipeline, fake_infer):
        """Test a processed transaction yields decoded text."""
        transaction = pipeline.submit(np.zeros(16000, dtype=np.float32), 16000, "record")

        pipeline._process(transaction)

        result = transaction.future.result(timeout=1.0)
        assert result.text == "hi there"
        assert result.transaction_id == transaction.id
        assert result.source == "record"
        assert result.duration_ms == 1000
        assert pipeline.pending_ids() == []

    def test_stages_run_in_order(self, pipeline, fake_extractor, fake_infer):
        """Test resample -> extract -> normalize -> infer."""
        samples = np.zeros(44100, dtype=np.float32)
        transaction = pipeline.submit(samples, 44100, "listen")

        with patch("listenkit.recognition.pipeline.resample", wraps=real_resample) as mock_resample:
            pipeline._process(transaction)

        mock_resample.assert_called_once()
        assert mock_resample.call_args[0][1:] == (44100, 16000)

        # Extractor receives the zero-padded 16kHz waveform
        waveform = fake_extractor.call_args[0][0]
        assert len(waveform) == max(512 + 186 * 256, 16000 + 256)

        # Model receives exactly min_length frames
        features = fake_infer.call_args[0][0]
        assert features.shape == (187, 80)
        assert np.all(features[100:] == np.float32(-13.8))

    def test_no_resample_at_model_rate(self, pipeline):
        """Test audio captured at the model rate is not resampled."""
        transaction = pipeline.submit(np.zeros(1600, dtype=np.float32), 16000, "record")

        with patch("listenkit.recognition.pipeline.resample") as mock_resample:
            pipeline._process(transaction)

        mock_resample.assert_not_called()

    def test_result_callbacks(self, pipeline):
        """Test result subscribers are notified."""
        callback = MagicMock()
        pipeline.on_result(callback)

        pipeline._process(pipeline.submit(np.zeros(100), 16000, "record"))

        callback.assert_called_once()
        assert callback.call_args[0][0].text == "hi there"

    def test_result_callback_error_is_contained(self, pipeline):
        """Test a failing subscriber does not affect others."""
        pipeline.on_result(MagicMock(side_effect=ValueError("Callback error")))
        second = MagicMock()
        pipeline.on_result(second)

        transaction = pipeline.submit(np.zeros(100), 16000, "record")
        pipeline._process(transaction)

        second.assert_called_once()
        assert transaction.future.result().text == "hi there"

    def test_inference_error_rejects_transaction(self, pipeline, fake_infer):
        """Test a failing stage rejects the future and notifies error subscribers."""
        fake_infer.side_effect = RuntimeError("Inference failed")
        on_error = MagicMock()
        pipeline.on_error(on_error)

        transaction = pipeline.submit(np.zeros(100), 16000, "record")
        pipeline._process(transaction)

        with pytest.raises(RuntimeError):
            transaction.future.result(timeout=1.0)
        on_error.assert_called_once()
        assert on_error.call_args[0][0] == transaction.id
        assert pipeline.get_recent_results() == []

    def test_feature_width_mismatch(self, mock_config, fake_infer, vocabulary):
        """Test an extractor of the wrong width is a configuration error."""
        extractor = MagicMock(return_value=np.zeros((100, 40), dtype=np.float32))
        pipeline = RecognitionPipeline(mock_config, extractor=extractor, model=fake_infer, vocabulary=vocabulary)

        transaction = pipeline.submit(np.zeros(100), 16000, "record")
        pipeline._process(transaction)

        with pytest.raises(ConfigurationError):
            transaction.future.result(timeout=1.0)
        fake_infer.assert_not_called()

    def test_vocabulary_load_failure_rejects_transaction(self, mock_config, fake_extractor, fake_infer):
        """Test a missing vocabulary rejects the transaction without decoding."""
        mock_config.model.models_dir = "/nonexistent"
        pipeline = RecognitionPipeline(mock_config, extractor=fake_extractor, model=fake_infer)

        transaction = pipeline.submit(np.zeros(100), 16000, "record")
        pipeline._process(transaction)

        with pytest.raises(SourceLoadFailure):
            transaction.future.result(timeout=1.0)
        fake_extractor.assert_not_called()

    @patch("listenkit.recognition.pipeline.CTCModel")
    def test_model_loaded_lazily(self, mock_model_class, mock_config, fake_extractor, fake_infer):
        """Test the model and vocabulary are loaded by the first transaction."""
        mock_model_class.return_value = fake_infer
        pipeline = RecognitionPipeline(mock_config, extractor=fake_extractor)

        mock_model_class.assert_not_called()

        transaction = pipeline.submit(np.zeros(100), 16000, "record")
        pipeline._process(transaction)

        assert transaction.future.result().text == "hi there"
        mock_model_class.assert_called_once()
        fake_infer.load.assert_called_once()

    @patch("listenkit.recognition.pipeline.CTCModel")
    def test_model_load_failure_then_retry(self, mock_model_class, mock_config, fake_extractor, fake_infer):
        """Test a failed load rejects one transaction and the next one loads again."""
        fake_infer.load.side_effect = [SourceLoadFailure("offline"), None]
        mock_model_class.return_value = fake_infer
        pipeline = RecognitionPipeline(mock_config, extractor=fake_extractor)

        first = pipeline.submit(np.zeros(100), 16000, "record")
        pipeline._process(first)
        second = pipeline.submit(np.zeros(100), 16000, "record")
        pipeline._process(second)

        with pytest.raises(SourceLoadFailure):
            first.future.result()
        assert second.future.result().text == "hi there"

    def test_cancel_pending_transaction(self, pipeline, fake_infer):
        """Test a cancelled transaction is skipped."""
        transaction = pipeline.submit(np.zeros(100), 16000, "listen")

        assert pipeline.cancel(transaction.id)
        pipeline._process(transaction)

        assert transaction.future.cancelled()
        fake_infer.assert_not_called()
        assert pipeline.pending_ids() == []

    def test_cancel_unknown_transaction(self, pipeline):
        assert not pipeline.cancel(999)

    def test_select_model(self, pipeline):
        """Test switching models drops loaded collaborators."""
        pipeline.select_model("monica")

        assert pipeline.model_name == "monica"
        assert pipeline.spec.min_length == 650
        assert pipeline._model is None
        assert pipeline._vocabulary is None

    def test_select_unknown_model(self, pipeline):
        """Test unknown names leave the current model selected."""
        with pytest.raises(ConfigurationError):
            pipeline.select_model("transformer")

        assert pipeline.model_name == "sample"

    def test_get_recent_results_with_clear(self, pipeline):
        """Test getting recent results with clear."""
        pipeline._process(pipeline.submit(np.zeros(100), 16000, "record"))

        results = pipeline.get_recent_results(clear=True)

        assert len(results) == 1
        assert pipeline.get_recent_results() == []

    def test_recent_results_are_bounded(self, mock_config, fake_extractor, fake_infer, vocabulary):
        """Test only the newest results are kept."""
        pipeline = RecognitionPipeline(
            mock_config,
            extractor=fake_extractor,
            model=fake_infer,
            vocabulary=vocabulary,
            max_recent_results=3,
        )
        transactions = [pipeline.submit(np.zeros(100), 16000, "listen") for _ in range(5)]
        for transaction in transactions:
            pipeline._process(transaction)

        results = pipeline.get_recent_results()

        assert [r.transaction_id for r in results] == [t.id for t in transactions[2:]]

    def test_clear_results(self, pipeline):
        pipeline._process(pipeline.submit(np.zeros(100), 16000, "record"))

        pipeline.clear_results()

        assert pipeline.get_recent_results() == []

    def test_start_stop(self, pipeline):
        """Test starting and stopping the worker."""
        pipeline.start()
        assert pipeline.is_running()
        pipeline.start()  # Should log warning but not fail

        pipeline.stop()
        assert not pipeline.is_running()

    def test_stop_not_running(self, pipeline):
        pipeline.stop()  # Should not raise

    def test_worker_processes_queue(self, pipeline):
        """Test transactions submitted to a running pipeline complete."""
        pipeline.start()
        try:
            transaction = pipeline.submit(np.zeros(4410, dtype=np.float32), 44100, "listen")
            result = transaction.future.result(timeout=5.0)
        finally:
            pipeline.stop()

        assert result.text == "hi there"
        assert result.source == "listen"

    def test_stop_cancels_queued_transactions(self, pipeline):
        """Test transactions still queued at shutdown are cancelled."""
        pipeline._running = True
        transaction = pipeline.submit(np.zeros(100), 16000, "record")

        pipeline.stop()

        assert transaction.future.cancelled()

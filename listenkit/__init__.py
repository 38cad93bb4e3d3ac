"""listenkit - on-device speech recognition with a CTC acoustic model."""

__version__ = "0.1.0"

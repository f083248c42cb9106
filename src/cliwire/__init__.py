"""cliwire — adapter between agent CLI subprocesses and a UI event channel."""

__version__ = "0.1.0"

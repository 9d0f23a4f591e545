from setu.transcription.base import TranscriptSource, TranscriptSourceError
from setu.transcription.debounce import TranscriptDebouncer
from setu.transcription.queue_source import QueueTranscriptSource
from setu.transcription.sentence_queue import SentenceQueue

__all__ = [
    "QueueTranscriptSource",
    "SentenceQueue",
    "TranscriptDebouncer",
    "TranscriptSource",
    "TranscriptSourceError",
]

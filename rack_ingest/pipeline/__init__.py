"""Event processing: ingestion pipeline and command side channel."""

from .commands import NFC_COMMANDS, CommandHandler, parse_response
from .ingestion import IngestionPipeline
from .stats import PipelineStats

__all__ = [
    "NFC_COMMANDS",
    "CommandHandler",
    "parse_response",
    "IngestionPipeline",
    "PipelineStats",
]

"""callpipe - pipe command lines into asynchronous remote calls."""

from callpipe.gate import InFlightGate
from callpipe.parser import Command, parse_command
from callpipe.session import PipeOptions, PipeSession
from callpipe.writer import AsyncWriter

__version__ = "0.1.0"

__all__ = ["AsyncWriter", "Command", "InFlightGate", "PipeOptions", "PipeSession", "parse_command"]

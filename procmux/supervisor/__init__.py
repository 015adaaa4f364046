"""
The Supervisor package.
Manages the lifecycle of the worker processes and multiplexes their output.

This package contains the central Supervisor class and its helper modules,
which together handle launching workers, splitting and tagging their output,
writing it to the aggregated sink and shutting the workers down.
"""
from .errors import ConfigurationError, LaunchError, ProcmuxError, StreamReadError, WorkerAbnormalExit
from .sink import AggregatedSink, render
from .splitter import StreamLineSplitter, iter_lines
from .supervisor import StartupResult, Supervisor, normalize_specs
from .shutdown import ShutdownReport
from .worker import StreamKind, TaggedLine, WorkerHandle, WorkerSpec, WorkerState

__all__ = [
    'Supervisor', 'StartupResult', 'normalize_specs', 'ShutdownReport',
    'WorkerHandle', 'WorkerSpec', 'WorkerState', 'TaggedLine', 'StreamKind',
    'StreamLineSplitter', 'iter_lines', 'AggregatedSink', 'render',
    'ProcmuxError', 'ConfigurationError', 'LaunchError', 'StreamReadError', 'WorkerAbnormalExit',
]

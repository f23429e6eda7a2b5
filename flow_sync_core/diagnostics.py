"""
Diagnostics collaborator.

Providers turn source text into ``Diagnostic`` records with character offsets;
``map_diagnostics_to_nodes`` attaches each one to the IR node whose source range
contains it so the canvas can highlight the offending node.
"""

import logging
import os
import re
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Iterable

from .config import SyncConfig
from .exceptions import CollaboratorFailure, TokenizeError
from .ir import IRNode
from .lexer import tokenize

logger = logging.getLogger(__name__)


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class Diagnostic:
    """A compiler message anchored at a character offset of the checked text."""
    start_offset: int
    message: str
    severity: Severity = Severity.ERROR
    code: Optional[str] = None


class DiagnosticsProvider(ABC):
    """Produces diagnostics for a source text."""

    @abstractmethod
    def diagnose(self, source_text: str) -> List[Diagnostic]:
        pass


class LexerDiagnosticsProvider(DiagnosticsProvider):
    """Reports the first tokenization failure, if any."""

    def diagnose(self, source_text: str) -> List[Diagnostic]:
        try:
            tokenize(source_text)
        except TokenizeError as e:
            return [Diagnostic(start_offset=e.offset, message=e.message)]
        return []


_TSC_LINE = re.compile(
    r'^(?P<file>.+?)\((?P<line>\d+),(?P<column>\d+)\): '
    r'(?P<severity>error|warning|message) (?P<code>TS\d+): (?P<message>.*)$'
)


def _run_subprocess(*args, **kwargs):
    """Wrapper around subprocess.run that always decodes output as UTF-8."""
    if kwargs.get('text', False) and 'encoding' not in kwargs:
        kwargs['encoding'] = 'utf-8'
        kwargs['errors'] = 'replace'
    return subprocess.run(*args, **kwargs)


def line_offsets(text: str) -> List[int]:
    """Offset of the first character of every line."""
    offsets = [0]
    for index, ch in enumerate(text):
        if ch == '\n':
            offsets.append(index + 1)
    return offsets


class TscDiagnosticsProvider(DiagnosticsProvider):
    """Runs ``tsc --noEmit`` on the text and parses its report."""

    TIMEOUT_SECONDS = 30

    def __init__(self, tsc_path: Optional[str] = None, timeout: Optional[float] = None):
        self._tsc_path: Optional[str] = tsc_path or shutil.which('tsc')
        self.timeout = timeout or self.TIMEOUT_SECONDS

    def diagnose(self, source_text: str) -> List[Diagnostic]:
        if not self._tsc_path:
            raise CollaboratorFailure("TypeScript compiler (tsc) not found on PATH", "diagnostics")

        tmp_dir = tempfile.mkdtemp(prefix='flow_sync_tsc_')
        tmp_file = os.path.join(tmp_dir, 'flow.ts')
        try:
            with open(tmp_file, 'w', encoding='utf-8') as f:
                f.write(source_text)

            proc = _run_subprocess(
                [self._tsc_path, '--noEmit', '--pretty', 'false', '--target', 'es2020', tmp_file],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CollaboratorFailure(
                f"tsc timed out after {self.timeout}s", "diagnostics", e) from e
        except OSError as e:
            raise CollaboratorFailure(f"Could not run tsc: {e}", "diagnostics", e) from e
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

        return self.parse_output(proc.stdout or '', source_text)

    def parse_output(self, output: str, source_text: str) -> List[Diagnostic]:
        """Convert ``file(line,col): error TSnnnn: message`` lines into diagnostics."""
        offsets = line_offsets(source_text)
        diagnostics: List[Diagnostic] = []
        for line in output.splitlines():
            match = _TSC_LINE.match(line.strip())
            if not match:
                if diagnostics and line.startswith(' '):
                    diagnostics[-1].message += '\n' + line.strip()
                continue
            line_index = min(int(match.group('line')) - 1, len(offsets) - 1)
            offset = offsets[max(line_index, 0)] + int(match.group('column')) - 1
            severity = {
                'error': Severity.ERROR,
                'warning': Severity.WARNING,
            }.get(match.group('severity'), Severity.INFO)
            diagnostics.append(Diagnostic(
                start_offset=min(offset, len(source_text)),
                message=match.group('message'),
                severity=severity,
                code=match.group('code'),
            ))
        logger.debug("tsc reported %d diagnostic(s)", len(diagnostics))
        return diagnostics


def map_diagnostics_to_nodes(diagnostics: Iterable[Diagnostic],
                             nodes: List[IRNode]) -> Dict[str, List[Diagnostic]]:
    """Group diagnostics by the first node whose source range contains them."""
    mapped: Dict[str, List[Diagnostic]] = {}
    for diagnostic in diagnostics:
        for node in nodes:
            if node.source_range is not None and node.source_range.contains(diagnostic.start_offset):
                mapped.setdefault(node.id, []).append(diagnostic)
                break
        else:
            logger.debug("Diagnostic at offset %d matches no node", diagnostic.start_offset)
    return mapped


def provider_from_config(config: SyncConfig) -> Optional[DiagnosticsProvider]:
    """A tsc provider when a compiler path is configured, otherwise nothing."""
    if config.tsc_path:
        return TscDiagnosticsProvider(config.tsc_path, timeout=config.tsc_timeout)
    return None

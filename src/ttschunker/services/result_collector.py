from __future__ import annotations

from collections.abc import Iterable

from ttschunker.models import CollectedResults, SynthesisFailure, SynthesisOutcome


def collect(outcomes: Iterable[SynthesisOutcome]) -> CollectedResults:
    """Regroup outcomes by index regardless of the order they completed in.

    ``succeeded`` and ``failed`` are both ascending by index. An empty
    ``succeeded`` list is a hard failure for the caller; a non-empty
    ``failed`` list alongside successes is a reportable warning.
    """
    succeeded: list[tuple[int, bytes]] = []
    failures: dict[int, SynthesisFailure] = {}
    total = 0
    for outcome in outcomes:
        total += 1
        if outcome.ok:
            succeeded.append((outcome.index, outcome.audio))
        else:
            failures[outcome.index] = outcome

    succeeded.sort(key=lambda item: item[0])
    return CollectedResults(
        succeeded=succeeded,
        failed=sorted(failures),
        total_bytes=sum(len(audio) for _, audio in succeeded),
        total=total,
        failures=failures,
    )


def failure_warnings(results: CollectedResults) -> list[str]:
    """Human-readable warnings for a partially successful run."""
    if not results.failed:
        return []
    lines = [
        f"{len(results.failed)} of {results.total} segments failed: "
        + ", ".join(str(i) for i in results.failed)
    ]
    for index in results.failed:
        failure = results.failures[index]
        lines.append(f"segment {index}: {failure.error_kind.value}: {failure.message}")
    return lines

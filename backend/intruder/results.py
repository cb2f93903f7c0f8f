from typing import Iterator, Optional

from models.attack import AttackResult


class ResultAggregator:
    """Append-only, completion-ordered view over a session's result list.

    Wraps the list in place so the session record always carries the
    rows appended so far.
    """

    def __init__(self, results: list[AttackResult] | None = None) -> None:
        self._results: list[AttackResult] = results if results is not None else []
        self._by_id: dict[int, AttackResult] = {r.sequence_id: r for r in self._results}

    def append(self, result: AttackResult) -> None:
        if self._results and result.sequence_id <= self._results[-1].sequence_id:
            raise ValueError(
                f"result {result.sequence_id} arrived after {self._results[-1].sequence_id}"
            )
        self._results.append(result)
        self._by_id[result.sequence_id] = result

    def get(self, sequence_id: int) -> Optional[AttackResult]:
        return self._by_id.get(sequence_id)

    def all(self) -> list[AttackResult]:
        return list(self._results)

    def failures(self) -> list[AttackResult]:
        return [r for r in self._results if r.status_code == 0]

    def clear(self) -> None:
        self._results.clear()
        self._by_id.clear()

    def __len__(self) -> int:
        return len(self._results)

    def __iter__(self) -> Iterator[AttackResult]:
        return iter(self._results)

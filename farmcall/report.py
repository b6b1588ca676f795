from dataclasses import dataclass, asdict


@dataclass
class BatchReport:
    """Counts a batch job logs when it finishes."""
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0

    def as_dict(self) -> dict:
        return asdict(self)

    def __str__(self):
        return f"inserted={self.inserted}, updated={self.updated}, skipped={self.skipped}, errors={self.errored}"

"""ASIN weight lookups used by every weight aggregate (all totals are grams)."""
from ..models import db, Asin

GRAMS_PER_KG = 1000


def _num(x) -> float:
    return float(x) if x is not None else 0.0


def weight_in_grams(asin: Asin | None) -> float:
    """Per-unit weight of an ASIN record in grams; 0 when unknown."""
    if asin is None:
        return 0.0
    multiplier = GRAMS_PER_KG if (asin.weight_unit or "g") == "kg" else 1
    return _num(asin.weight) * multiplier


def get_asin_by_code(user_id: int, code: str) -> Asin | None:
    if not code:
        return None
    return db.session.scalar(
        db.select(Asin).where(Asin.user_id == user_id, Asin.asin == code.strip())
    )


def update_asin(asin: Asin, **fields) -> Asin:
    """Patch an ASIN record in the current session (caller commits)."""
    for k, v in fields.items():
        setattr(asin, k, v)
    return asin


class AsinWeightResolver:
    """Memoizes ASIN lookups by code for the length of one operation."""

    def __init__(self, user_id: int):
        self.user_id = user_id
        self._cache: dict[str, Asin | None] = {}

    def asin(self, code: str) -> Asin | None:
        if code not in self._cache:
            self._cache[code] = get_asin_by_code(self.user_id, code)
        return self._cache[code]

    def prime(self, codes) -> None:
        """Load many codes with one query."""
        missing = {c for c in codes if c and c not in self._cache}
        if not missing:
            return
        rows = db.session.scalars(
            db.select(Asin).where(Asin.user_id == self.user_id, Asin.asin.in_(missing))
        ).all()
        found = {a.asin: a for a in rows}
        for code in missing:
            self._cache[code] = found.get(code)

    def grams_per_unit(self, code: str) -> float:
        return weight_in_grams(self.asin(code))

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


def generate_card_id():
    return str(uuid.uuid4())


def utc_now():
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Card:
    id: str
    question: str
    answer: str

    def to_dict(self):
        return {"id": self.id, "question": self.question, "answer": self.answer}


@dataclass(frozen=True)
class CardSet:
    """
    A titled, sourced collection of cards produced by one extraction or import.
    Never mutated; a new run produces a new CardSet.
    """
    title: str
    source: str
    cards: tuple = ()
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        # Accept any iterable of cards but store an immutable sequence
        object.__setattr__(self, 'cards', tuple(self.cards))

    def to_dict(self):
        return {
            "title": self.title,
            "source": self.source,
            "cards": [c.to_dict() for c in self.cards],
            "createdAt": self.created_at.isoformat(),
        }

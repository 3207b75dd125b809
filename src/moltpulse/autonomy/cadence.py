import random
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class CadenceGates:
    """Per-cycle coin flips that keep the agent from acting like a metronome.

    Rolled once at the start of a cycle from an explicit seed so a cycle can be
    replayed exactly in tests.
    """

    seed: Optional[int]
    comments: bool
    replies: bool
    post: bool
    follow: bool
    search: bool

    @classmethod
    def roll(cls, cfg: Any, seed: Optional[int] = None, rng: Optional[random.Random] = None) -> "CadenceGates":
        rng = rng or random.Random(seed)
        return cls(
            seed=seed,
            comments=rng.random() < cfg.comment_probability,
            replies=rng.random() < cfg.reply_probability,
            post=rng.random() < cfg.post_probability,
            follow=rng.random() < cfg.follow_probability,
            search=cfg.search_enabled and rng.random() < cfg.search_probability,
        )

    def describe(self) -> str:
        return (
            f"comments={int(self.comments)} replies={int(self.replies)} post={int(self.post)} "
            f"follow={int(self.follow)} search={int(self.search)}"
        )

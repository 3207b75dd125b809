import unittest
from types import SimpleNamespace

from moltpulse.autonomy.cadence import CadenceGates


def _cfg(p=0.5, search_enabled=True):
    return SimpleNamespace(
        comment_probability=p,
        reply_probability=p,
        post_probability=p,
        follow_probability=p,
        search_probability=p,
        search_enabled=search_enabled,
    )


class CadenceGatesTests(unittest.TestCase):
    def test_same_seed_same_gates(self):
        cfg = _cfg()
        for seed in range(20):
            self.assertEqual(CadenceGates.roll(cfg, seed=seed), CadenceGates.roll(cfg, seed=seed))

    def test_probability_extremes(self):
        self.assertEqual(CadenceGates.roll(_cfg(1.0), seed=3).describe(),
                         "comments=1 replies=1 post=1 follow=1 search=1")
        closed = CadenceGates.roll(_cfg(0.0), seed=3)
        self.assertFalse(any([closed.comments, closed.replies, closed.post, closed.follow, closed.search]))

    def test_search_disabled_overrides_probability(self):
        self.assertFalse(CadenceGates.roll(_cfg(1.0, search_enabled=False), seed=1).search)


if __name__ == "__main__":
    unittest.main()

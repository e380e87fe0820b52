# tests/test_chain_walker.py
"""
Tests for bounded sponsor chain walking.
"""
from config import Config
from mlm_engine.utils.chain_walker import ChainWalker


class TestWalkUpline:

    def test_levels_start_at_direct_sponsor(self, session, chain):
        bottom = chain[-1]
        visited = []

        ChainWalker(session).walk_upline(bottom, lambda m, level: visited.append((m.memberID, level)) or True)

        expected = [(m.memberID, i + 1) for i, m in enumerate(reversed(chain[:-1]))]
        assert visited == expected

    def test_max_depth_caps_traversal(self, session, chain):
        upline = ChainWalker(session).get_upline_chain(chain[-1], max_depth=3)
        assert [m.memberID for m in upline] == [chain[-2].memberID, chain[-3].memberID, chain[-4].memberID]

    def test_callback_can_stop(self, session, chain):
        processed = ChainWalker(session).walk_upline(chain[-1], lambda m, level: level < 2)
        assert processed == 2

    def test_configured_depth_is_default(self, session, chain):
        """
        TEST: without max_depth the configured MAX_CHAIN_DEPTH applies.
        """
        Config.set(Config.MAX_CHAIN_DEPTH, 2)
        assert len(ChainWalker(session).get_upline_chain(chain[-1])) == 2

    def test_root_has_no_upline(self, session, chain):
        assert ChainWalker(session).get_upline_chain(chain[0]) == []

"""
Tests para agent/locks.py — Locks por conversación.
"""

import sys
import threading
from pathlib import Path

import pytest

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from agent.locks import ConversationLocks, TurnBusyError


class TestConversationLocks:
    def test_hold_and_release(self):
        locks = ConversationLocks()
        with locks.hold("c1"):
            assert locks.active_keys() == 1
        assert locks.active_keys() == 0

    def test_released_on_exception(self):
        locks = ConversationLocks()
        with pytest.raises(RuntimeError):
            with locks.hold("c1"):
                raise RuntimeError("boom")
        # Se puede volver a tomar sin bloquear
        with locks.hold("c1", timeout=0.1):
            pass
        assert locks.active_keys() == 0

    def test_timeout_when_busy(self):
        locks = ConversationLocks()
        held = threading.Event()
        release = threading.Event()

        def holder():
            with locks.hold("c1"):
                held.set()
                release.wait(5)

        t = threading.Thread(target=holder)
        t.start()
        held.wait(5)
        try:
            with pytest.raises(TurnBusyError):
                with locks.hold("c1", timeout=0.05):
                    pass
        finally:
            release.set()
            t.join(5)
        assert locks.active_keys() == 0

    def test_different_keys_do_not_block(self):
        locks = ConversationLocks()
        with locks.hold("c1"):
            with locks.hold("c2", timeout=0.05):
                assert locks.active_keys() == 2

    def test_same_key_serialized(self):
        locks = ConversationLocks()
        active = []
        max_active = []
        guard = threading.Lock()

        def turn():
            with locks.hold("c1"):
                with guard:
                    active.append(1)
                    max_active.append(len(active))
                threading.Event().wait(0.02)
                with guard:
                    active.pop()

        threads = [threading.Thread(target=turn) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert max(max_active) == 1
        assert locks.active_keys() == 0

import random
import threading

import pytest
from sqlalchemy.orm import Session

from faie.services import ledger


def _merge(engine, tag, s, u, now):
    with Session(engine) as session:
        ledger.merge(session, tag, s, u, now=now)
        session.commit()


def test_first_merge_inserts(engine):
    _merge(engine, "billing", 0.2, 9, now=1000)
    with Session(engine) as session:
        t = ledger.get_theme(session, "billing")
        assert t.count == 1
        assert t.avg_sentiment == pytest.approx(0.2)
        assert t.avg_urgency == pytest.approx(9)
        assert t.first_seen == t.last_seen == 1000


def test_incremental_mean_uses_pre_update_count(engine):
    _merge(engine, "api", 0.0, 2, now=1)
    _merge(engine, "api", 1.0, 10, now=2)
    _merge(engine, "api", 0.5, 6, now=3)
    with Session(engine) as session:
        t = ledger.get_theme(session, "api")
        assert t.count == 3
        assert t.avg_sentiment == pytest.approx(0.5)
        assert t.avg_urgency == pytest.approx(6.0)
        assert t.first_seen == 1
        assert t.last_seen == 3


@pytest.mark.parametrize("seed", [1, 7, 42])
def test_mean_matches_arithmetic_mean_in_any_order(engine, seed):
    rng = random.Random(seed)
    samples = [(rng.random(), rng.randint(1, 10)) for _ in range(25)]

    for i, (s, u) in enumerate(samples):
        _merge(engine, "forward", s, u, now=i)
    shuffled = samples[:]
    rng.shuffle(shuffled)
    for i, (s, u) in enumerate(shuffled):
        _merge(engine, "shuffled", s, u, now=i)

    mean_s = sum(s for s, _ in samples) / len(samples)
    mean_u = sum(u for _, u in samples) / len(samples)
    with Session(engine) as session:
        for tag in ("forward", "shuffled"):
            t = ledger.get_theme(session, tag)
            assert t.count == len(samples)
            assert t.avg_sentiment == pytest.approx(mean_s, abs=1e-9)
            assert t.avg_urgency == pytest.approx(mean_u, abs=1e-9)


def test_concurrent_merges_do_not_lose_updates(engine):
    def worker(n):
        for _ in range(n):
            _merge(engine, "performance", 1.0, 10, now=5)

    threads = [threading.Thread(target=worker, args=(10,)) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    with Session(engine) as session:
        t = ledger.get_theme(session, "performance")
        assert t.count == 40
        assert t.avg_urgency == pytest.approx(10.0)


def test_merge_all_and_list_themes(engine):
    with Session(engine) as session:
        ledger.merge_all(session, ["billing", "payments"], 0.1, 10)
        ledger.merge_all(session, ["billing"], 0.3, 8)
        session.commit()
        themes = ledger.list_themes(session)
    assert [t.theme_name for t in themes] == ["billing", "payments"]
    assert themes[0].count == 2
    assert themes[0].avg_sentiment == pytest.approx(0.2)

"""
并发提交测试
使用文件型 SQLite（WAL）与多线程、独立会话模拟并发请求
"""
import threading
import time
import pytest
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import sessionmaker

from conftest import make_location, make_promotion
from app.database import Base, create_db_engine
from app.models.ontology import Promotion, Reservation
from app.services.errors import PromotionError, PromotionRejection, SoldOutError, StoreUnavailableError
from app.services.pricing_service import JurisdictionResolver, PricingService
from app.services.reservation_service import ReservationService

START = datetime(2025, 3, 7)
END = datetime(2025, 3, 9)


@pytest.fixture
def file_sessionmaker(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'concurrency.db'}", lock_timeout=30)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


def _run_concurrently(factory, jobs):
    """每个 job 在独立线程和独立会话中执行，返回 (结果, 异常) 列表"""
    barrier = threading.Barrier(len(jobs))
    results = [None] * len(jobs)
    resolver = JurisdictionResolver(default_tax_rate=Decimal("0"), service_fee=Decimal("0"), tax_rates={})

    def worker(index, job):
        session = factory()
        try:
            service = ReservationService(session, pricing=PricingService(session, jurisdictions=resolver))
            barrier.wait()
            try:
                results[index] = (job(service).id, None)
            except Exception as e:
                results[index] = (None, e)
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(i, job)) for i, job in enumerate(jobs)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


class TestLastSpot:

    def test_two_commits_one_spot(self, file_sessionmaker):
        setup = file_sessionmaker()
        location = make_location(setup, total_spots=1)
        location_id = location.id
        setup.close()

        results = _run_concurrently(file_sessionmaker, [
            lambda svc: svc.commit(location_id, START, END, "user-1"),
            lambda svc: svc.commit(location_id, START, END, "user-2"),
        ])

        succeeded = [r for r, e in results if r is not None]
        failed = [e for r, e in results if e is not None]
        assert len(succeeded) == 1
        assert len(failed) == 1
        assert isinstance(failed[0], SoldOutError)

        check = file_sessionmaker()
        assert check.query(Reservation).count() == 1
        check.close()

    def test_many_commits_never_oversell(self, file_sessionmaker):
        setup = file_sessionmaker()
        location = make_location(setup, total_spots=3)
        location_id = location.id
        setup.close()

        jobs = [
            (lambda i: lambda svc: svc.commit(location_id, START, END, f"user-{i}"))(i)
            for i in range(8)
        ]
        results = _run_concurrently(file_sessionmaker, jobs)

        assert sum(1 for r, e in results if r is not None) == 3
        assert all(isinstance(e, SoldOutError) for r, e in results if e is not None)


class TestLastPromotionUse:

    def test_exactly_one_winner(self, file_sessionmaker):
        setup = file_sessionmaker()
        location_ids = [make_location(setup, name=f"停车场{i}", total_spots=5).id for i in range(5)]
        promo_id = make_promotion(setup, code="LAST1", usage_limit=1).id
        setup.close()

        jobs = [
            (lambda loc: lambda svc: svc.commit(loc, START, END, f"user-{loc}", promo_code="LAST1"))(loc)
            for loc in location_ids
        ]
        results = _run_concurrently(file_sessionmaker, jobs)

        winners = [r for r, e in results if r is not None]
        losers = [e for r, e in results if e is not None]
        assert len(winners) == 1
        assert len(losers) == 4
        assert all(isinstance(e, PromotionError) for e in losers)
        assert all(e.reason == PromotionRejection.USAGE_EXHAUSTED for e in losers)

        check = file_sessionmaker()
        assert check.get(Promotion, promo_id).used_count == 1
        assert check.query(Reservation).count() == 1
        check.close()


class TestLockWait:
    """另一个写事务持锁时，提交在锁等待超时后快速失败"""

    def test_commit_fails_fast_when_store_locked(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'locked.db'}"
        engine = create_db_engine(url, lock_timeout=0.3)
        holder_engine = create_db_engine(url, lock_timeout=0.3)
        Base.metadata.create_all(bind=engine)
        factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        setup = factory()
        location_id = make_location(setup, total_spots=5).id
        promo = make_promotion(setup, usage_limit=5)
        promo_id = promo.id
        setup.close()

        holder = holder_engine.raw_connection()
        session = factory()
        try:
            holder.cursor().execute("BEGIN IMMEDIATE")

            service = ReservationService(session)
            started = time.monotonic()
            with pytest.raises(StoreUnavailableError) as exc:
                service.commit(location_id, START, END, "user-1", promo_code="SAVE20")
            elapsed = time.monotonic() - started

            assert exc.value.retryable is True
            assert elapsed < 5
        finally:
            holder.rollback()
            holder.close()
            session.close()

        check = factory()
        try:
            assert check.query(Reservation).count() == 0
            assert check.get(Promotion, promo_id).used_count == 0
        finally:
            check.close()
            holder_engine.dispose()
            engine.dispose()

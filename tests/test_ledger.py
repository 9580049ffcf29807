import os
import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from giveaway_engine.errors import (
    ClosedError,
    DuplicateError,
    LoginRequired,
    NotFound,
    ValidationError,
)
from giveaway_engine.identity import Identity
from giveaway_engine.ledger import EntryLedger
from giveaway_engine.models import Base, Giveaway, User
from giveaway_engine.models.giveaway import ACTIVE, DRAFT
from giveaway_engine.notifier import CountNotifier

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class RecordingPublisher:
    def __init__(self):
        self.events: list[tuple[str, str, dict]] = []

    def publish(self, room, event, payload):
        self.events.append((room, event, dict(payload)))


class LedgerTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(
            bind=self.engine, future=True, expire_on_commit=False
        )

    def tearDown(self):
        self.engine.dispose()

    def _giveaway(self, session, **overrides) -> Giveaway:
        fields = dict(
            title="Sticker pack",
            must_be_logged_in=False,
            start_at=T0 - timedelta(hours=1),
            end_at=T0 + timedelta(hours=1),
            status=ACTIVE,
        )
        fields.update(overrides)
        giveaway = Giveaway(**fields)
        session.add(giveaway)
        session.flush()
        return giveaway


class TryJoinTests(LedgerTestCase):
    def test_join_persists_confirmations(self):
        with self.Session.begin() as session:
            giveaway = self._giveaway(session)
            entry = EntryLedger(session).try_join(
                giveaway.id,
                Identity.anonymous("anon-1"),
                True,
                {"photoUsage": True},
                now=T0,
            )
            self.assertIsNotNone(entry.id)
            self.assertEqual(entry.anon_id, "anon-1")
            self.assertIsNone(entry.user_id)
            self.assertEqual(entry.final_confirmations, {"photoUsage": True})
            self.assertFalse(entry.disqualified)

    def test_terms_checked_first(self):
        with self.Session.begin() as session:
            with self.assertRaises(ValidationError):
                EntryLedger(session).try_join(
                    999, Identity.anonymous("anon-1"), False, now=T0
                )

    def test_unknown_giveaway(self):
        with self.Session.begin() as session:
            with self.assertRaises(NotFound):
                EntryLedger(session).try_join(
                    999, Identity.anonymous("anon-1"), True, now=T0
                )

    def test_closed_giveaway(self):
        with self.Session.begin() as session:
            draft = self._giveaway(session, status=DRAFT)
            expired = self._giveaway(session, end_at=T0 - timedelta(minutes=1))
            ledger = EntryLedger(session)
            for giveaway in (draft, expired):
                with self.subTest(giveaway=giveaway.id):
                    with self.assertRaises(ClosedError):
                        ledger.try_join(
                            giveaway.id, Identity.anonymous("anon-1"), True, now=T0
                        )
            self.assertEqual(ledger.count(draft.id), 0)

    def test_login_required(self):
        with self.Session.begin() as session:
            giveaway = self._giveaway(session, must_be_logged_in=True)
            user = User(display_name="Member")
            session.add(user)
            session.flush()
            ledger = EntryLedger(session)
            with self.assertRaises(LoginRequired):
                ledger.try_join(giveaway.id, Identity.anonymous("anon-1"), True, now=T0)
            entry = ledger.try_join(giveaway.id, Identity.user(user.id), True, now=T0)
            self.assertEqual(entry.user_id, user.id)

    def test_duplicate_identity(self):
        with self.Session.begin() as session:
            giveaway = self._giveaway(session)
            ledger = EntryLedger(session)
            ledger.try_join(giveaway.id, Identity.anonymous("anon-1"), True, now=T0)
            with self.assertRaises(DuplicateError):
                ledger.try_join(giveaway.id, Identity.anonymous("anon-1"), True, now=T0)
            ledger.try_join(giveaway.id, Identity.anonymous("anon-2"), True, now=T0)
            self.assertEqual(ledger.count(giveaway.id), 2)

    def test_user_and_anon_ids_do_not_collide(self):
        with self.Session.begin() as session:
            giveaway = self._giveaway(session)
            user = User(display_name="Member")
            session.add(user)
            session.flush()
            ledger = EntryLedger(session)
            ledger.try_join(giveaway.id, Identity.user(user.id), True, now=T0)
            ledger.try_join(giveaway.id, Identity.anonymous(str(user.id)), True, now=T0)
            self.assertEqual(ledger.count(giveaway.id), 2)

    def test_unique_constraint_catches_race(self):
        with self.Session.begin() as session:
            giveaway = self._giveaway(session)
            giveaway_id = giveaway.id
            EntryLedger(session).try_join(
                giveaway_id, Identity.anonymous("anon-1"), True, now=T0
            )

        # Simulate a second request whose duplicate pre-check ran before the
        # first insert committed.
        session = self.Session()
        try:
            with patch.object(EntryLedger, "find", return_value=None):
                with self.assertRaises(DuplicateError):
                    EntryLedger(session).try_join(
                        giveaway_id, Identity.anonymous("anon-1"), True, now=T0
                    )
            session.rollback()
        finally:
            session.close()

        with self.Session() as session:
            self.assertEqual(EntryLedger(session).count(giveaway_id), 1)

    def test_fingerprint_kept_only_when_requested(self):
        with self.Session.begin() as session:
            plain = self._giveaway(session)
            tracked = self._giveaway(session, device_fingerprinting=True)
            ledger = EntryLedger(session)
            a = ledger.try_join(
                plain.id, Identity.anonymous("a"), True, device_fingerprint="fp", now=T0
            )
            b = ledger.try_join(
                tracked.id, Identity.anonymous("a"), True, device_fingerprint="fp", now=T0
            )
            self.assertIsNone(a.device_fingerprint)
            self.assertEqual(b.device_fingerprint, "fp")


class LedgerQueryTests(LedgerTestCase):
    def test_snapshot_order_and_exclusions(self):
        with self.Session.begin() as session:
            giveaway = self._giveaway(session)
            ledger = EntryLedger(session)
            late = ledger.try_join(
                giveaway.id, Identity.anonymous("late"), True, now=T0 + timedelta(seconds=5)
            )
            first = ledger.try_join(giveaway.id, Identity.anonymous("first"), True, now=T0)
            tie = ledger.try_join(giveaway.id, Identity.anonymous("tie"), True, now=T0)
            dq = ledger.try_join(
                giveaway.id, Identity.anonymous("dq"), True, now=T0 + timedelta(seconds=1)
            )
            ledger.disqualify(dq.id)

            self.assertEqual(
                [e.id for e in ledger.snapshot(giveaway.id)], [first.id, tie.id, late.id]
            )
            self.assertEqual(
                [e.id for e in ledger.snapshot(giveaway.id, exclude=[first.id])],
                [tie.id, late.id],
            )
            self.assertEqual(
                [e.id for e in ledger.list_entries(giveaway.id)],
                [late.id, dq.id, tie.id, first.id],
            )

    def test_disqualify_updates_count_but_not_registration(self):
        with self.Session.begin() as session:
            giveaway = self._giveaway(session)
            ledger = EntryLedger(session)
            entry = ledger.try_join(giveaway.id, Identity.anonymous("a"), True, now=T0)
            self.assertEqual(ledger.count(giveaway.id), 1)

            ledger.disqualify(entry.id)
            self.assertEqual(ledger.count(giveaway.id), 0)
            self.assertTrue(ledger.is_registered(giveaway.id, Identity.anonymous("a")))
            with self.assertRaises(DuplicateError):
                ledger.try_join(giveaway.id, Identity.anonymous("a"), True, now=T0)

            with self.assertRaises(NotFound):
                ledger.disqualify(12345)

    def test_is_registered(self):
        with self.Session.begin() as session:
            giveaway = self._giveaway(session)
            ledger = EntryLedger(session)
            ledger.try_join(giveaway.id, Identity.anonymous("a"), True, now=T0)
            self.assertTrue(ledger.is_registered(giveaway.id, Identity.anonymous("a")))
            self.assertFalse(ledger.is_registered(giveaway.id, Identity.anonymous("b")))
            self.assertFalse(ledger.is_registered(giveaway.id, None))


class CountNotificationTests(LedgerTestCase):
    def test_count_published_after_commit(self):
        publisher = RecordingPublisher()
        notifier = CountNotifier(publisher)
        with self.Session() as session:
            giveaway = self._giveaway(session)
            session.commit()
            ledger = EntryLedger(session, notifier=notifier)
            ledger.try_join(giveaway.id, Identity.anonymous("a"), True, now=T0)
            ledger.try_join(giveaway.id, Identity.anonymous("b"), True, now=T0)
            self.assertEqual(publisher.events, [])

            session.commit()
            notifier.shutdown()
            self.assertEqual(
                publisher.events,
                [(f"giveaway:{giveaway.id}", "count", {"count": 2})],
            )

    def test_rollback_discards_pending_counts(self):
        publisher = RecordingPublisher()
        notifier = CountNotifier(publisher)
        with self.Session() as session:
            giveaway = self._giveaway(session)
            session.commit()
            giveaway_id = giveaway.id
            EntryLedger(session, notifier=notifier).try_join(
                giveaway_id, Identity.anonymous("a"), True, now=T0
            )
            session.rollback()
            session.commit()
            notifier.shutdown()
            self.assertEqual(publisher.events, [])
            self.assertEqual(EntryLedger(session).count(giveaway_id), 0)

    def test_failing_publisher_never_fails_the_join(self):
        class Broken:
            def publish(self, room, event, payload):
                raise RuntimeError("relay down")

        notifier = CountNotifier(Broken())
        with self.Session() as session:
            giveaway = self._giveaway(session)
            session.commit()
            with self.assertLogs("giveaway_engine.notifier", level="WARNING"):
                EntryLedger(session, notifier=notifier).try_join(
                    giveaway.id, Identity.anonymous("a"), True, now=T0
                )
                session.commit()
                notifier.shutdown()
            self.assertEqual(EntryLedger(session).count(giveaway.id), 1)

    def test_slow_publisher_does_not_delay_the_join(self):
        release = threading.Event()
        started = threading.Event()
        delivered = []

        class Slow:
            def publish(self, room, event, payload):
                started.set()
                release.wait(timeout=10)
                delivered.append((room, event, dict(payload)))

        notifier = CountNotifier(Slow())
        try:
            with self.Session() as session:
                giveaway = self._giveaway(session)
                session.commit()
                EntryLedger(session, notifier=notifier).try_join(
                    giveaway.id, Identity.anonymous("a"), True, now=T0
                )
                session.commit()

                # Commit returned while the publisher is still blocked.
                self.assertTrue(started.wait(timeout=5))
                self.assertEqual(delivered, [])
                self.assertEqual(EntryLedger(session).count(giveaway.id), 1)
        finally:
            release.set()
            notifier.shutdown()

        self.assertEqual(
            delivered, [(f"giveaway:{giveaway.id}", "count", {"count": 1})]
        )


class ConcurrentJoinTests(unittest.TestCase):
    """Simultaneous joins on separate connections to one database file."""

    WORKERS = 8

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        path = os.path.join(self.tmp.name, "giveaways.db")
        self.engine = create_engine(
            f"sqlite+pysqlite:///{path}",
            future=True,
            connect_args={"timeout": 30, "check_same_thread": False},
        )
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(
            bind=self.engine, future=True, expire_on_commit=False
        )
        with self.Session.begin() as session:
            giveaway = Giveaway(
                title="Sticker pack",
                must_be_logged_in=False,
                start_at=T0 - timedelta(hours=1),
                end_at=T0 + timedelta(hours=1),
                status=ACTIVE,
            )
            session.add(giveaway)
            session.flush()
            self.giveaway_id = giveaway.id

    def tearDown(self):
        self.engine.dispose()
        self.tmp.cleanup()

    def test_same_identity_joins_exactly_once(self):
        barrier = threading.Barrier(self.WORKERS)
        results = []
        lock = threading.Lock()

        def join():
            session = self.Session()
            try:
                barrier.wait(timeout=10)
                EntryLedger(session).try_join(
                    self.giveaway_id, Identity.anonymous("anon-1"), True, now=T0
                )
                session.commit()
                outcome = "ok"
            except DuplicateError:
                session.rollback()
                outcome = "dup"
            except Exception as exc:
                session.rollback()
                outcome = repr(exc)
            finally:
                session.close()
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=join) for _ in range(self.WORKERS)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        self.assertEqual(sorted(results), ["dup"] * (self.WORKERS - 1) + ["ok"])
        with self.Session() as session:
            self.assertEqual(EntryLedger(session).count(self.giveaway_id), 1)
            self.assertEqual(len(EntryLedger(session).list_entries(self.giveaway_id)), 1)


if __name__ == "__main__":
    unittest.main()

from datetime import datetime, timedelta, timezone

from giveaway_engine.db.engine import get_sessionmaker, make_engine
from giveaway_engine.identity import Identity
from giveaway_engine.ledger import EntryLedger
from giveaway_engine.models import Base, Giveaway, User
from giveaway_engine.models.giveaway import ACTIVE


def main() -> None:
    """Reset the development database and fill it with sample giveaways."""
    engine = make_engine()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    Session = get_sessionmaker(engine)

    now = datetime.now(timezone.utc)

    with Session.begin() as session:
        users = [
            User(display_name="Alice", name="Alice Example"),
            User(display_name="Bob", name="Bob Example"),
            User(display_name="Carol", name="Carol Example"),
        ]
        session.add_all(users)
        session.flush()

        window = Giveaway(
            title="Community meetup swag",
            description="Absolute window giveaway open for one week.",
            max_winners=2,
            start_at=now,
            end_at=now + timedelta(days=7),
            status=ACTIVE,
        )
        countdown = Giveaway(
            title="Live stream raffle",
            description="Open for ten minutes once started; anonymous entries allowed.",
            must_be_logged_in=False,
            max_winners=1,
            start_at=now,
            duration_s=600,
            remaining_s=600,
            status=ACTIVE,
        )
        session.add_all([window, countdown])
        session.flush()

        ledger = EntryLedger(session)
        for user in users:
            ledger.try_join(
                window.id,
                Identity.user(user.id),
                True,
                {"photoConsent": True},
            )
        for anon in ("anon-1", "anon-2"):
            ledger.try_join(countdown.id, Identity.anonymous(anon), True)

    print("Seeded giveaways and entries.")


if __name__ == "__main__":
    main()

from datetime import date
from decimal import Decimal

import pytest
from faker import Faker

from autorecon.database import create_db_engine, create_session_factory, init_db
from autorecon.models import Actor, Partner, Transaction
from autorecon.models.enums import PartnerType, PaymentMethod, TransactionType
from autorecon.services import ApprovalService, EventBus, SettlementRunService
from autorecon.services.settlement_runs import follow_approvals

Faker.seed(42)
fake = Faker("en_US")

PERIOD_START = date(2025, 1, 1)
PERIOD_END = date(2025, 1, 31)


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def events(session_factory):
    """Event bus with runs following their approval requests, as in the app."""
    bus = EventBus()
    follow_approvals(bus, session_factory)
    return bus


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def run_service(db, events):
    return SettlementRunService(db, events, max_workers=1)


@pytest.fixture
def approval_service(db, events):
    return ApprovalService(db, events)


@pytest.fixture
def maker():
    return Actor(id="U001", name=fake.name(), email=fake.company_email())


@pytest.fixture
def checker():
    return Actor(id="U002", name=fake.name(), email=fake.company_email())


@pytest.fixture
def operator():
    return Actor(id="U003", name=fake.name())


@pytest.fixture
def partners():
    return [
        Partner(id="P001", code="AMZN", name="Amazon Marketplace", type=PartnerType.MARKETPLACE),
        Partner(id="P002", code="STRP", name="Stripe Inc", type=PartnerType.PAYMENT_PROCESSOR),
    ]


@pytest.fixture
def make_txn():
    """Build a transaction inside the default period; amounts are strings or Decimals."""
    counter = iter(range(1, 10_000))

    def _make(amount="100.00", fee="0", type=TransactionType.SALE, currency="USD",
              transaction_date=date(2025, 1, 15), id=None):
        return Transaction(
            id=id or f"TXN-{next(counter):04d}",
            transaction_date=transaction_date,
            type=type,
            amount=Decimal(amount),
            fee=Decimal(fee),
            currency=currency,
            reference=f"REF-{fake.random_number(digits=6, fix_len=True)}",
        )

    return _make


@pytest.fixture
def draft_run(run_service, maker, partners):
    return run_service.create_run(
        period_start=PERIOD_START,
        period_end=PERIOD_END,
        payment_method=PaymentMethod.BANK_TRANSFER,
        partners=partners,
        created_by=maker,
        currency="USD",
        notes="January settlement",
    )


@pytest.fixture
def standard_transactions(make_txn):
    """P001: 1000/30 + 500/15 -> gross 1500, fees 45, net 1455. P002: one 200/6 sale."""
    return {
        "P001": [make_txn("1000.00", "30.00"), make_txn("500.00", "15.00")],
        "P002": [make_txn("200.00", "6.00")],
    }


@pytest.fixture
def reviewed_run(run_service, draft_run, standard_transactions, maker):
    run_service.attach_transactions(draft_run.id, standard_transactions, maker)
    return run_service.calculate(draft_run.id)


@pytest.fixture
def submitted_run(run_service, reviewed_run, maker):
    return run_service.submit_for_approval(reviewed_run.id, maker, comment="Ready for sign-off")

from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.orm import sessionmaker

from deedbank.db import Base, BuildEngine
from deedbank.modules.family.models import Child, DeedType, Parent
from deedbank.modules.ledger import models as ledger_models  # noqa: F401


@pytest.fixture
def engine(tmp_path):
    db_engine = BuildEngine(f"sqlite:///{tmp_path / 'deedbank.db'}")
    Base.metadata.create_all(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def family(db):
    parent = Parent(Email="parent@example.com")
    db.add(parent)
    db.flush()
    child = Child(ParentId=parent.Id, Name="Ava", DollarPerPoint=Decimal("0.25"))
    good_deed = DeedType(ParentId=parent.Id, Name="Tidy room", Points=5, Active=True)
    bad_deed = DeedType(ParentId=parent.Id, Name="Talking back", Points=-3, Active=True)
    db.add_all([child, good_deed, bad_deed])
    db.commit()
    return SimpleNamespace(
        ParentId=parent.Id,
        ChildId=child.Id,
        GoodDeedId=good_deed.Id,
        BadDeedId=bad_deed.Id,
    )

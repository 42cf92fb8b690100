from sqlalchemy import create_engine, inspect

from dealfeed.db.migrate import run_migrations


def test_run_migrations_is_repeatable():
    engine = create_engine("sqlite://", future=True)

    created = run_migrations(engine)

    assert created[0] == "products"
    assert set(created) == {"products", "price_history", "deals"}
    assert set(inspect(engine).get_table_names()) == set(created)
    assert run_migrations(engine) == []

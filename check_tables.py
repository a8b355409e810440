"""Print the tables of the configured database and the row count of each."""
from sqlalchemy import inspect, text

from fulfillment_core.app import db


def main():
    engine = db.engine
    tables = sorted(inspect(engine).get_table_names())
    print("Database Tables:")
    with engine.connect() as conn:
        for t in tables:
            count = conn.execute(text(f'SELECT count(*) FROM "{t}"')).scalar()
            print(f"  - {t} ({count} rows)")
    print(f"\nTotal: {len(tables)} tables")


if __name__ == '__main__':
    main()

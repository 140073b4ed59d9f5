from settlement_hub.database import Base, SessionLocal, engine
from settlement_hub.models import models  # noqa: F401
from settlement_hub.reconciliation import generate_reconciliation_csv

def reconcile(output_path: str = "reconciliation.csv") -> int:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        csv_text, mismatch_count = generate_reconciliation_csv(db)
    finally:
        db.close()
    with open(output_path, "w", newline="") as f:
        f.write(csv_text)
    return 1 if mismatch_count else 0

if __name__ == "__main__":
    exit_code = reconcile()
    raise SystemExit(exit_code)

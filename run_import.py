import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from farmcall.csv_import import import_csv

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    if len(sys.argv) < 2:
        print("Usage: python run_import.py path/to/contacts.csv [rp_data|crm]")
        raise SystemExit(1)
    source = sys.argv[2] if len(sys.argv) > 2 else "crm"
    try:
        report = import_csv(sys.argv[1], source=source)
    except SQLAlchemyError as e:
        logging.getLogger("run_import").error("[import] storage error: %s", e)
        raise SystemExit(1)
    print(f"Import complete: {report}")

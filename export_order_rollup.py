import os
import json
import logging

import django
from dotenv import load_dotenv

# --- Setup Logging ---
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')


def export_order_rollup(output_path='order_rollup.json', store=None):
    """
    Computes the per-user order rollup over the whole order history and
    writes every row, sorted by total spent, to a local JSON file.
    """
    load_dotenv()
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'wellness_backend.settings')
    django.setup()

    from orders.services import StatsComputationError, get_all_users_with_orders, get_order_store

    if store is None:
        try:
            store = get_order_store()
        except Exception as e:
            logging.error(f"Failed to connect to MongoDB: {e}")
            return None

    try:
        rows = [row.to_dict() for row in get_all_users_with_orders(sort='-totalSpent', store=store)]
    except StatsComputationError as e:
        logging.error(f"Rollup failed: {e}")
        return None

    if not rows:
        logging.warning("No users with orders found. Nothing to export.")
        return rows

    try:
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(rows, f, ensure_ascii=False, indent=2)
        logging.info(f"Wrote {len(rows)} user rollups to '{output_path}'.")
    except OSError as e:
        logging.error(f"Could not write '{output_path}': {e}")
    return rows


if __name__ == "__main__":
    export_order_rollup()

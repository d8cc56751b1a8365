import datetime
import secrets


def get_utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def get_utc_iso_now() -> str:
    return get_utc_now().isoformat()


def generate_transaction_number() -> str:
    return f"TXN-{get_utc_now():%Y%m%d}-{secrets.token_hex(5).upper()}"

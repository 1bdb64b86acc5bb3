"""Label dictionary for report exports (th/en)."""
from __future__ import annotations

TRANSLATIONS: dict[str, dict[str, str]] = {
    "en": {
        # Common
        "date": "Date",
        "station": "Station",
        "period": "Period",
        "total": "Total",
        "totals": "TOTALS",

        # Transactions
        "transactions": "Transactions",
        "license_plate": "License Plate",
        "customer": "Customer",
        "customer_code": "Customer Code",
        "payment_type": "Payment Type",
        "product_type": "Fuel Type",
        "liters": "Liters",
        "price_per_liter": "Price/Liter",
        "amount": "Amount",
        "bill": "Book/Bill No.",

        # Shift report
        "shift_report": "Shift Reconciliation Report",
        "shift": "Shift",
        "status": "Status",
        "total_liters": "Total Liters",
        "expected_amount": "Expected",
        "cash_received": "Cash",
        "credit_received": "Credit",
        "card_received": "Card",
        "transfer_received": "Transfer",
        "total_received": "Received",
        "variance": "Variance",
        "variance_status": "Variance Status",
        "severity": "Severity",

        # Payment types
        "pt_CASH": "Cash",
        "pt_CREDIT": "Credit",
        "pt_TRANSFER": "Transfer",
        "pt_CARD": "Card",
        "pt_BOX_TRUCK": "Box Truck",
        "pt_OIL_TRUCK_SUPACHAI": "Supachai Oil Truck",

        # Variance status
        "vs_OVER": "Over",
        "vs_SHORT": "Short",
        "vs_BALANCED": "Balanced",
    },
    "th": {
        # Common
        "date": "วันที่",
        "station": "สถานี",
        "period": "ช่วงเวลา",
        "total": "รวม",
        "totals": "รวมทั้งหมด",

        # Transactions
        "transactions": "รายการขาย",
        "license_plate": "ทะเบียน",
        "customer": "ลูกค้า",
        "customer_code": "รหัสลูกค้า",
        "payment_type": "ประเภทชำระ",
        "product_type": "ประเภทน้ำมัน",
        "liters": "ลิตร",
        "price_per_liter": "ราคา/ลิตร",
        "amount": "รวมเงิน",
        "bill": "เล่ม/เลขบิล",

        # Shift report
        "shift_report": "รายงานกระทบยอดกะ",
        "shift": "กะ",
        "status": "สถานะ",
        "total_liters": "ลิตรรวม",
        "expected_amount": "ยอดที่ควรได้",
        "cash_received": "เงินสด",
        "credit_received": "เงินเชื่อ",
        "card_received": "บัตรเครดิต",
        "transfer_received": "โอนเงิน",
        "total_received": "รับจริง",
        "variance": "ส่วนต่าง",
        "variance_status": "สถานะส่วนต่าง",
        "severity": "ระดับ",

        # Payment types
        "pt_CASH": "เงินสด",
        "pt_CREDIT": "เงินเชื่อ",
        "pt_TRANSFER": "โอนเงิน",
        "pt_CARD": "บัตรเครดิต",
        "pt_BOX_TRUCK": "รถตู้ทึบ",
        "pt_OIL_TRUCK_SUPACHAI": "รถน้ำมันศุภชัย",

        # Variance status
        "vs_OVER": "เกิน",
        "vs_SHORT": "ขาด",
        "vs_BALANCED": "พอดี",
    },
}

DEFAULT_LANG = "th"


def t(lang: str, key: str) -> str:
    """Get translated label. Falls back to Thai, then to the key itself."""
    return TRANSLATIONS.get(lang, TRANSLATIONS[DEFAULT_LANG]).get(
        key, TRANSLATIONS[DEFAULT_LANG].get(key, key)
    )


def payment_type_label(lang: str, payment_type: str) -> str:
    return t(lang, f"pt_{payment_type}")


def payment_type_from_label(label: str) -> str:
    """Reverse of :func:`payment_type_label` across every language."""
    label = label.strip()
    for table in TRANSLATIONS.values():
        for key, value in table.items():
            if key.startswith("pt_") and value == label:
                return key[3:]
    return label.upper()

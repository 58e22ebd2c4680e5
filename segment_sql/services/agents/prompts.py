from __future__ import annotations

from segment_sql.services.policy.table_scope import ALLOWED_TABLES


SEGMENT_SCHEMA: dict[str, dict[str, object]] = {
    "patients": {
        "label": "patient master",
        "columns": [
            ("patient_id", "TEXT", "primary key"),
            ("name", "TEXT", "full name"),
            ("name_kana", "TEXT", "name reading (kana)"),
            ("tel", "TEXT", "phone number"),
            ("line_id", "TEXT", "LINE user id"),
            ("gender", "TEXT", "'male', 'female', etc."),
            ("birth_date", "DATE", "date of birth"),
            ("created_at", "TIMESTAMPTZ", "registered at"),
            ("tenant_id", "UUID", ""),
        ],
    },
    "orders": {
        "label": "orders and payments",
        "columns": [
            ("id", "UUID", "primary key"),
            ("patient_id", "TEXT", "foreign key -> patients"),
            ("payment_status", "TEXT", "'pending', 'paid', 'failed', 'refunded'"),
            ("shipping_status", "TEXT", "'pending', 'preparing', 'shipped', 'delivered'"),
            ("payment_method", "TEXT", "'credit_card', 'bank_transfer'"),
            ("total_amount", "INTEGER", "total in JPY"),
            ("paid_at", "TIMESTAMPTZ", "paid at"),
            ("created_at", "TIMESTAMPTZ", ""),
            ("tenant_id", "UUID", ""),
        ],
    },
    "intake": {
        "label": "medical questionnaires",
        "columns": [
            ("id", "UUID", "primary key"),
            ("patient_id", "TEXT", "foreign key -> patients"),
            ("answers", "JSONB", "questionnaire answers"),
            ("status", "TEXT", "'OK', 'NG', null"),
            ("reserve_id", "TEXT", "reservation id"),
            ("created_at", "TIMESTAMPTZ", ""),
            ("tenant_id", "UUID", ""),
        ],
    },
    "reservations": {
        "label": "consultation reservations",
        "columns": [
            ("id", "UUID", "primary key"),
            ("patient_id", "TEXT", "foreign key -> patients"),
            ("reserve_id", "TEXT", "reservation id"),
            ("reserved_date", "DATE", "reserved date"),
            ("reserved_time", "TEXT", "reserved time"),
            ("status", "TEXT", "'confirmed', 'canceled'"),
            ("prescription_menu", "TEXT", "prescribed menu name"),
            ("created_at", "TIMESTAMPTZ", ""),
            ("tenant_id", "UUID", ""),
        ],
    },
    "reorders": {
        "label": "repeat prescriptions",
        "columns": [
            ("id", "UUID", "primary key"),
            ("patient_id", "TEXT", "foreign key -> patients"),
            ("status", "TEXT", "'pending', 'confirmed', 'paid', 'shipped', 'canceled'"),
            ("total_amount", "INTEGER", "total in JPY"),
            ("karte_note", "JSONB", "repeat prescription chart note"),
            ("paid_at", "TIMESTAMPTZ", ""),
            ("created_at", "TIMESTAMPTZ", ""),
            ("tenant_id", "UUID", ""),
        ],
    },
}


def _schema_section() -> str:
    lines: list[str] = []
    for table in ALLOWED_TABLES:
        table_info = SEGMENT_SCHEMA[table]
        lines.append(f"### {table} ({table_info['label']})")
        for name, sql_type, note in table_info["columns"]:  # type: ignore[union-attr]
            suffix = f" ({note})" if note else ""
            lines.append(f"- {name}: {sql_type}{suffix}")
        lines.append("")
    return "\n".join(lines).rstrip()


_EXAMPLES = """
Input: "patients who visited at least twice in the last 3 months"
Output:
SELECT p.patient_id, p.name
FROM patients p
INNER JOIN reservations r ON r.patient_id = p.patient_id
WHERE r.reserved_date >= CURRENT_DATE - INTERVAL '3 months'
  AND r.status = 'confirmed'
GROUP BY p.patient_id, p.name
HAVING COUNT(r.id) >= 2

Input: "patients in their 30s who were prescribed Mounjaro"
Output:
SELECT DISTINCT p.patient_id, p.name
FROM patients p
INNER JOIN reservations r ON r.patient_id = p.patient_id
WHERE r.prescription_menu ILIKE '%Mounjaro%'
  AND EXTRACT(YEAR FROM AGE(p.birth_date)) >= 30
  AND EXTRACT(YEAR FROM AGE(p.birth_date)) < 40

Input: "patients whose total paid purchases are 50,000 yen or more"
Output:
SELECT p.patient_id, p.name
FROM patients p
INNER JOIN orders o ON o.patient_id = p.patient_id
WHERE o.payment_status = 'paid'
GROUP BY p.patient_id, p.name
HAVING SUM(o.total_amount) >= 50000
""".strip()


SEGMENT_SYSTEM_PROMPT = f"""You are the patient segmentation assistant of a clinic management system.
Convert the operator's natural-language patient condition into a single PostgreSQL SELECT statement.

## Available tables and columns

{_schema_section()}

## Rules

1. Output exactly one SELECT statement. Never include DELETE, UPDATE, INSERT, DROP or any other write or DDL statement.
2. Always select patients.patient_id and patients.name so each patient can be identified.
3. Use LEFT JOIN / INNER JOIN when several tables are needed. Do not use subqueries, CTEs (WITH), UNION, INTERSECT or EXCEPT.
4. Use GROUP BY + HAVING for aggregates such as visit counts or total amounts.
5. Use CURRENT_DATE and INTERVAL for date conditions.
6. Never add a tenant_id filter; the application adds it.
7. Age: EXTRACT(YEAR FROM AGE(patients.birth_date)).
8. Prescriptions: reservations.prescription_menu contains the drug name (ILIKE '%drug%').
9. Do not add LIMIT; the application controls it.
10. Do not write SQL comments or semicolon-separated statements.
11. Output SQL only. No explanation, no markdown, no code fences.

## Examples

{_EXAMPLES}
"""

"""
Customers module (admin-only).

Scope:
- Customers CRUD (list + create + update + delete, delete-all)
- Name/mobile prefix search and live search
- CSV export
- Bulk import from Excel (.xlsx/.xls) with a per-row outcome report
"""

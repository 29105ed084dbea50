"""
repositories/ - Data Access Layer
==================================
Each repository encapsulates all SQL queries for a specific domain entity.
Repositories validate payloads against the table descriptors, receive raw
rows from the database and return domain model objects. They raise
`db.errors` exceptions and never leak psycopg2 errors.
"""

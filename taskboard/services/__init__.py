"""Service layer. Business rules and all db.session.commit() calls live here."""

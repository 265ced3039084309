"""
Domain services for LangQuest.

- progress_engine: learning state, hearts, points and the resume pointer
- subscriptions: idempotent processing of payment-provider events
- payments: payment-provider adapter
"""

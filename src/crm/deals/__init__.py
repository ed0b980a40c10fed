"""Deal pipeline module -- models, schemas, stage rules, repository and service.

Provides SQLAlchemy models (DealType, Deal, ChecklistItem, DealActivity,
UserDealTypeSettings), Pydantic schemas, the pure stage-transition planner
(DealStageTransition), DealRepository for async persistence and DealService
for the business rules the API exposes.
"""

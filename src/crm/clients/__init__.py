"""Client records -- model, schemas and repository for the people deals and tasks belong to."""

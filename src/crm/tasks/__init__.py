"""Client tasks -- to-dos attached to a client and assigned to a user.

Overdue-ness is derived from ``due_date`` at read time; the lazy
notification evaluator reads due tasks through TaskRepository.
"""

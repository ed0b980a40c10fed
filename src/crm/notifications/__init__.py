"""In-app notifications -- storage, listing, read state and lazy task evaluation.

NotificationService handles direct notifications (task assigned/completed)
and the feed the UI reads. TaskNotificationEvaluator materializes due/overdue
task notifications on read, scheduled in the background by
NotificationEvaluationScheduler.
"""

# /chathub/utils/metrics.py

from prometheus_client import Counter, Histogram, Gauge

# This file defines all Prometheus metrics used for application monitoring.
# Centralizing them here makes them easy to find and manage.

# Conversation Metrics
turn_counter = Counter('chat_turns_total', 'Visitor turns processed', ['outcome'])
turn_duration_histogram = Histogram('chat_turn_duration_seconds', 'Visitor turn processing time in seconds')
dashboard_actions_counter = Counter('dashboard_actions_total', 'Dashboard actions', ['action', 'status'])
ai_requests_counter = Counter('ai_requests_total', 'Total AI requests', ['status'])
notifications_counter = Counter('staff_notifications_total', 'Human notifications sent', ['kind', 'status'])
database_operations_counter = Counter('database_operations_total', 'Database operations', ['operation', 'status'])

# Realtime Metrics
active_connections_gauge = Gauge('realtime_active_connections', 'Open realtime connections', ['role'])
realtime_deliveries_counter = Counter('realtime_deliveries_total', 'Realtime events delivered', ['event', 'status'])

# Performance Metrics
response_time_histogram = Histogram('response_time_seconds', 'Response time in seconds', ['endpoint'])
cache_operations = Counter('cache_operations_total', 'Cache operations', ['operation', 'status'])

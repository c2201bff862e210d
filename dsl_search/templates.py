"""
Canned search requests for common operational questions.
"""

import copy
from typing import Any, Dict

QUERY_TEMPLATES: Dict[str, Any] = {
    'errors_last_hour': {
        'query': {
            'bool': {
                'must': [
                    {'term': {'severity': 'error'}},
                    {'range': {'timestamp': {'gte': 'now-1h'}}},
                ]
            }
        },
        'aggs': {
            'by_source': {'terms': {'field': 'source', 'size': 10}},
        },
    },
    'security_events': {
        'query': {
            'bool': {
                'should': [
                    {'match': {'message': 'authentication'}},
                    {'match': {'message': 'login'}},
                    {'match': {'category': 'security'}},
                ]
            }
        },
        'sort': [{'timestamp': 'desc'}],
    },
    'device_activity': {
        'query': {'match_all': {}},
        'aggs': {
            'by_device': {'terms': {'field': 'device_id', 'size': 20}},
            'activity_over_time': {
                'date_histogram': {'field': 'timestamp', 'interval': '1h'},
            },
        },
    },
    'recent_warnings': 'severity:warning timestamp:now-24h',
    'database_errors': {
        'query': {
            'bool': {
                'must': [
                    {'term': {'severity': 'error'}},
                    {'query_string': {'query': 'database', 'default_field': 'message'}},
                ]
            }
        },
        'sort': [{'timestamp': 'desc'}],
        'size': 50,
    },
}


def list_templates() -> Dict[str, Any]:
    """Return a copy of every named template, safe for callers to modify."""
    return copy.deepcopy(QUERY_TEMPLATES)


def get_template(name: str) -> Any:
    """Return a copy of one template.

    Raises:
        KeyError: If no template has that name
    """
    if name not in QUERY_TEMPLATES:
        raise KeyError(f"Unknown query template: {name}")
    return copy.deepcopy(QUERY_TEMPLATES[name])

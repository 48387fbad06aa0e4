"""
Tunable numbers of the periodization and analytics engines.

Defaults follow the clinic's current protocol. Everything can be overridden
per deployment through Config.POLICY, e.g. {'standard_weeks': 8}.
"""

import copy


class Policy:

    DEFAULTS = {
        # --- CYCLE ---
        'introductory_weeks': 4,
        'standard_weeks': 6,

        # Introductory ramp: week -> (sets fraction, reps fraction, min sets, min reps).
        # The final week of the block must be (1.0, 1.0).
        'introductory_ramp': {
            1: (0.5, 0.67, 1, 6),
            2: (0.67, 0.67, 1, 6),
            3: (0.67, 0.83, 1, 8),
            4: (1.0, 1.0, 1, 1),
        },

        # Standard block: reps scale by 1 + step * (week - 1), capped
        'standard_rep_step': 0.05,
        'standard_rep_cap': 1.2,

        # Each new standard block raises intensity, capped
        'block_intensity_growth': 1.1,
        'block_intensity_cap': 1.5,

        # --- PROGRESSION ---
        'max_baseline_multiple': 1.5,
        'decrease_floor': 0.5,
        'high_exercise_pain': 5,
        'high_general_pain': 7,
        'gates': {
            'introductory': {
                'adherence': 0.70,
                'avg_effort': 7,
                'avg_exercise_pain': 2,
                'completion_rate': 0.85,
                'avg_overall_feeling': 3,
                'avg_general_pain': 3,
            },
            'standard': {
                'adherence': 0.80,
                'avg_effort': 8,
                'avg_exercise_pain': 3,
                'completion_rate': 0.90,
                'avg_overall_feeling': 3,
                'avg_general_pain': 4,
            },
        },
        'metrics_window_days': 7,

        # Effort-driven weight changes
        'weight_easy_effort': 6,
        'weight_hard_effort': 9,
        'weight_step': 0.05,
        'weight_rounding': 0.5,

        # --- ANALYTICS ---
        'critical_pain': 7,
        'low_completion_rate': 50,
        'trend_epsilon': {'effort': 0.5, 'pain': 0.5, 'completion': 0.1},
        'streak_milestones': (7, 14, 30),
        'streak_lookback_days': 365,
        'activity_grid_days': 7,
        'max_weight_wins': 2,
        'max_window_days': 365,
    }

    def __init__(self, overrides=None):
        values = copy.deepcopy(self.DEFAULTS)
        for key, value in (overrides or {}).items():
            if key not in values:
                raise KeyError(f'Unknown policy setting: {key}')
            values[key] = value
        self.__dict__.update(values)

    @classmethod
    def from_config(cls, config) -> 'Policy':
        return cls(config.get('POLICY'))

    def gates_for(self, block_type) -> dict:
        return self.gates[getattr(block_type, 'value', block_type)]

    def weeks_for(self, block_type) -> int:
        key = getattr(block_type, 'value', block_type)
        return self.introductory_weeks if key == 'introductory' else self.standard_weeks


DEFAULT_POLICY = Policy()

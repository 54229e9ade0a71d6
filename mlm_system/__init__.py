# mlm_system/__init__.py
"""
MLM System - forced-matrix commission engine.
"""

# Services
from mlm_system.services.commission_service import CommissionService, CommissionResult
from mlm_system.services.volume_service import VolumeService
from mlm_system.services.rank_service import RankService

# Configuration
from mlm_system.config.ranks import Rank
from mlm_system.config.rule_set import RuleSet, load_rule_set, get_rule_set

# Utilities
from mlm_system.utils.chain_walker import ChainWalker
from mlm_system.utils.time_machine import timeMachine

# Events
from mlm_system.events.event_bus import eventBus, MLMEvents

# Errors
from mlm_system.errors import (
    MLMError,
    NotFoundError,
    CorruptGenealogyError,
    InvalidRuleSet,
    OrderNotPaidError,
)

__all__ = [
    # Services
    'CommissionService',
    'CommissionResult',
    'VolumeService',
    'RankService',

    # Config
    'Rank',
    'RuleSet',
    'load_rule_set',
    'get_rule_set',

    # Utils
    'ChainWalker',
    'timeMachine',

    # Events
    'eventBus',
    'MLMEvents',

    # Errors
    'MLMError',
    'NotFoundError',
    'CorruptGenealogyError',
    'InvalidRuleSet',
    'OrderNotPaidError',
]

# Copyright 2025 CogniPilot Foundation
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# nary_dynamics/loader.py

from dataclasses import dataclass, field
import logging
from typing import Dict, List

import yaml

from .nary_system import NArySystem

_log = logging.getLogger(__name__)


@dataclass
class FleetUnit:
    name: str
    params: Dict[str, float] = field(default_factory=dict)


class FleetLoader:
    """Read a fleet description and build an NArySystem from a prototype model.

    File format:

        units:
          - name: left
            params: {k: 1.0}
          - name: right
            params: {k: 2.5}
    """

    def __init__(self, yaml_path: str):
        with open(yaml_path, 'r') as f:
            y = yaml.safe_load(f) or {}

        self.units: List[FleetUnit] = []

        for i, obj in enumerate(y.get('units') or []):
            params = obj.get('params') or {}
            self.units.append(
                FleetUnit(
                    name=str(obj.get('name', f'unit{i}')),
                    params={str(k): float(v) for k, v in params.items()},
                )
            )
        _log.debug('loaded %d units from %s', len(self.units), yaml_path)

    def build(self, model) -> NArySystem:
        """One copy of `model` per unit, with that unit's parameter overrides."""
        system = NArySystem(model)
        for unit in self.units:
            system.add_system(model.with_params(**unit.params))
        return system

"""
Targeting selection -> Gateway audience filter compiler.

The Gateway filter is a single {"$and": [...]} container of typed conditions.
Everything here is pure and deterministic: list facets are de-duplicated and
sorted, and conditions are emitted in the fixed FACETS order, so compiling the
same selection always yields byte-identical JSON.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from services.common.errors import ValidationError

AGE_FLOOR = 0
AGE_CEILING = 100
NO_TARGETING_DESCRIPTION = '전체 대상'


class DataType(str, Enum):
    NUMBER = 'number'
    CODE = 'code'
    BOOLEAN = 'boolean'


class MetaType(str, Enum):
    SERVICE = 'svc'
    LOCATION = 'loc'
    APP = 'app'
    PROFILE = 'pro'


# Province name -> Gateway hcode
REGION_CODES: Dict[str, str] = {
    '서울': '11',
    '부산': '26',
    '대구': '27',
    '인천': '28',
    '광주': '29',
    '대전': '30',
    '울산': '31',
    '세종': '36',
    '경기': '41',
    '강원': '42',
    '충북': '43',
    '충남': '44',
    '전북': '45',
    '전남': '46',
    '경북': '47',
    '경남': '48',
    '제주': '50',
}

GENDER_CODES: Dict[str, Dict[str, str]] = {
    'v2': {'male': '1', 'female': '2'},
    'v1': {'male': 'M', 'female': 'F'},
}
GENDER_LABELS = {'male': '남자', 'female': '여자'}

# Selection keys collapsed into one Gateway condition each. Categories go out
# as "cat1 > cat2" label strings under dataType "code", not as
# {cat1, cat2, cat3} objects under dataType "cate".
BUCKETS: Dict[str, Tuple[str, ...]] = {
    'interest': ('shopping11stCategories', 'webappCategories'),
    'behavior': ('callUsageCategories', 'locationCategories', 'mobilityCategories'),
}


@dataclass
class TargetingSelection:
    gender: Optional[str] = None
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    regions: List[str] = field(default_factory=list)
    districts: List[str] = field(default_factory=list)
    carriers: List[str] = field(default_factory=list)
    devices: List[str] = field(default_factory=list)
    categories: Dict[str, List[Any]] = field(default_factory=dict)
    geofence_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'TargetingSelection':
        """Build a selection from the JSON shape clients send (camelCase keys)"""
        data = data or {}
        if not isinstance(data, dict):
            raise ValidationError("Targeting must be an object")

        category_keys = [key for keys in BUCKETS.values() for key in keys]
        return cls(
            gender=data.get('gender') or None,
            age_min=_optional_age(data.get('ageMin'), 'ageMin'),
            age_max=_optional_age(data.get('ageMax'), 'ageMax'),
            regions=_string_list(data.get('regions'), 'regions'),
            districts=_string_list(data.get('districts'), 'districts'),
            carriers=_string_list(data.get('carriers'), 'carriers'),
            devices=_string_list(data.get('devices'), 'devices'),
            categories={key: _list(data.get(key), key) for key in category_keys if data.get(key)},
            geofence_ids=_string_list(data.get('geofenceIds'), 'geofenceIds'),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'gender': self.gender,
            'ageMin': self.age_min,
            'ageMax': self.age_max,
            'regions': self.regions,
            'districts': self.districts,
            'carriers': self.carriers,
            'devices': self.devices,
            'geofenceIds': self.geofence_ids,
        }
        payload.update(self.categories)
        return {key: value for key, value in payload.items() if value not in (None, [], {})}


@dataclass
class CompiledFilter:
    expression: Dict[str, List[Dict[str, Any]]]
    description: str
    diagnostics: List[Dict[str, str]] = field(default_factory=list)

    @property
    def conditions(self) -> List[Dict[str, Any]]:
        return self.expression['$and']

    def to_json(self) -> str:
        return serialize_filter(self.expression)


def serialize_filter(expression: Dict[str, Any]) -> str:
    """Canonical JSON for the Gateway; key order is fixed by construction"""
    return json.dumps(expression, ensure_ascii=False, separators=(',', ':'))


def _optional_age(value: Any, name: str) -> Optional[int]:
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a whole number")
    try:
        age = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a whole number", details={name: value})
    if age != value and str(age) != str(value).strip():
        raise ValidationError(f"{name} must be a whole number", details={name: value})
    if not AGE_FLOOR <= age <= AGE_CEILING:
        raise ValidationError(f"{name} must be between {AGE_FLOOR} and {AGE_CEILING}", details={name: value})
    return age


def _list(value: Any, name: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{name} must be a list")
    return value


def _string_list(value: Any, name: str) -> List[str]:
    return [str(item).strip() for item in _list(value, name) if str(item).strip()]


def category_label(item: Any) -> str:
    """'가구/인테리어 > 침대' for {cat1Name, cat2Name}, or the string itself"""
    if isinstance(item, dict):
        parts = []
        for level in ('cat1', 'cat2', 'cat3'):
            if item.get(level):
                parts.append(str(item.get(f'{level}Name') or item[level]).strip())
        return ' > '.join(parts)
    return str(item).strip()


def _sorted_unique(values: Iterable[str]) -> List[str]:
    return sorted({value for value in values if value})


def _condition(data: Any, data_type: DataType, meta_type: MetaType, code: str, desc: str) -> Dict[str, Any]:
    return {
        'data': data,
        'dataType': data_type.value,
        'metaType': meta_type.value,
        'code': code,
        'desc': desc,
        'not': False,
    }


class FilterCompiler:
    """Compile a TargetingSelection into the Gateway filter language."""

    def __init__(self, contract_version: str = 'v2', region_codes: Optional[Dict[str, str]] = None):
        if contract_version not in GENDER_CODES:
            raise ValidationError(f"Unsupported gateway contract version: {contract_version}")
        self.gender_codes = GENDER_CODES[contract_version]
        self.region_codes = region_codes or REGION_CODES
        # Priority order of emitted conditions
        self.facets: List[Tuple[str, Callable]] = [
            ('age', self._age),
            ('gender', self._gender),
            ('region', self._region),
            ('district', self._code_list('districts', MetaType.LOCATION, 'home_location', '세부 지역')),
            ('carrier', self._code_list('carriers', MetaType.SERVICE, 'carrier_cd', '통신사')),
            ('device', self._code_list('devices', MetaType.SERVICE, 'device_cd', '단말')),
            ('interest', self._bucket('interest', MetaType.APP, 'interest_cate', '관심사')),
            ('behavior', self._bucket('behavior', MetaType.PROFILE, 'behavior_cd', '행동')),
            ('geofence', self._code_list('geofence_ids', MetaType.LOCATION, 'geofence_id', '지오펜스')),
        ]

    def compile(self, selection: Any) -> CompiledFilter:
        if not isinstance(selection, TargetingSelection):
            selection = TargetingSelection.from_dict(selection)

        conditions: List[Dict[str, Any]] = []
        diagnostics: List[Dict[str, str]] = []
        for _name, build in self.facets:
            condition = build(selection, diagnostics)
            if condition is not None:
                conditions.append(condition)

        description = ', '.join(c['desc'] for c in conditions) or NO_TARGETING_DESCRIPTION
        return CompiledFilter(expression={'$and': conditions}, description=description,
                              diagnostics=diagnostics)

    def _age(self, selection: TargetingSelection, diagnostics) -> Optional[Dict[str, Any]]:
        if selection.age_min is None and selection.age_max is None:
            return None
        low = AGE_FLOOR if selection.age_min is None else selection.age_min
        high = AGE_CEILING if selection.age_max is None else selection.age_max
        if low > high:
            raise ValidationError("ageMin must not be greater than ageMax",
                                  details={'ageMin': low, 'ageMax': high})
        return _condition({'gt': low, 'lt': high}, DataType.NUMBER, MetaType.SERVICE,
                          'cust_age_cd', f'연령: {low}세 ~ {high}세')

    def _gender(self, selection: TargetingSelection, diagnostics) -> Optional[Dict[str, Any]]:
        gender = selection.gender
        if gender is None or gender == 'all':
            return None
        if gender not in self.gender_codes:
            raise ValidationError(f"Unsupported gender selection: {gender}",
                                  details={'allowed': ['all', *sorted(self.gender_codes)]})
        return _condition([self.gender_codes[gender]], DataType.CODE, MetaType.SERVICE,
                          'sex_cd', f'성별: {GENDER_LABELS[gender]}')

    def _region(self, selection: TargetingSelection, diagnostics) -> Optional[Dict[str, Any]]:
        resolved: Dict[str, str] = {}
        for name in selection.regions:
            code = self.region_codes.get(name)
            if code is None:
                if not any(d['value'] == name for d in diagnostics):
                    diagnostics.append({'facet': 'region', 'value': name, 'reason': 'unknown_region'})
                continue
            resolved[code] = name
        if not resolved:
            return None
        codes = sorted(resolved)
        names = ', '.join(resolved[code] for code in codes)
        return _condition(codes, DataType.CODE, MetaType.LOCATION, 'home_location', f'지역: {names}')

    @staticmethod
    def _code_list(attribute: str, meta_type: MetaType, code: str, label: str) -> Callable:
        def build(selection: TargetingSelection, diagnostics) -> Optional[Dict[str, Any]]:
            values = _sorted_unique(getattr(selection, attribute))
            if not values:
                return None
            return _condition(values, DataType.CODE, meta_type, code, f"{label}: {', '.join(values)}")
        return build

    @staticmethod
    def _bucket(bucket: str, meta_type: MetaType, code: str, label: str) -> Callable:
        def build(selection: TargetingSelection, diagnostics) -> Optional[Dict[str, Any]]:
            values = _sorted_unique(
                category_label(item)
                for key in BUCKETS[bucket]
                for item in selection.categories.get(key, [])
            )
            if not values:
                return None
            return _condition(values, DataType.CODE, meta_type, code, f"{label}: {', '.join(values)}")
        return build

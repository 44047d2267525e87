"""
Каталог критериев выбора типа развёртывания СУБД

Статическая таблица критериев с базовыми баллами для каждого варианта
развёртывания. Загружается один раз при старте и дальше не меняется.
"""
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from dbms_advisor.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)


class DeploymentOption(str, Enum):
    """Варианты развёртывания (порядок фиксирован)"""
    ON_PREM = "on_prem"
    PRIVATE = "private"
    PUBLIC = "public"

    @property
    def label(self) -> str:
        return _OPTION_LABELS[self]

    @classmethod
    def ordered(cls) -> List["DeploymentOption"]:
        return [cls.ON_PREM, cls.PRIVATE, cls.PUBLIC]


_OPTION_LABELS = {
    DeploymentOption.ON_PREM: "On-Premise",
    DeploymentOption.PRIVATE: "Private Cloud",
    DeploymentOption.PUBLIC: "Public Cloud",
}


class UnknownCriterionError(KeyError):
    """Raised when a criterion name is not present in the catalog"""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Критерий '{self.name}' не найден в каталоге"


class ScoreTriple(BaseModel):
    """Три целых балла, по одному на вариант развёртывания"""
    model_config = ConfigDict(frozen=True)

    on_prem: int = 0
    private: int = 0
    public: int = 0

    @classmethod
    def of(cls, on_prem: int, private: int, public: int) -> "ScoreTriple":
        return cls(on_prem=on_prem, private=private, public=public)

    def get(self, option: DeploymentOption) -> int:
        return getattr(self, option.value)

    def replace(self, option: DeploymentOption, value: int) -> "ScoreTriple":
        return self.model_copy(update={option.value: value})

    def scaled(self, factor: int) -> "ScoreTriple":
        return ScoreTriple.of(self.on_prem * factor, self.private * factor, self.public * factor)

    def add(self, other: "ScoreTriple") -> "ScoreTriple":
        return ScoreTriple.of(
            self.on_prem + other.on_prem,
            self.private + other.private,
            self.public + other.public,
        )

    def as_tuple(self) -> Tuple[int, int, int]:
        return self.on_prem, self.private, self.public


ZERO_SCORES = ScoreTriple.of(0, 0, 0)
# Подставляется, когда значение спецкритерия неизвестно
NEUTRAL_SCORES = ScoreTriple.of(5, 5, 5)


class Criterion(BaseModel):
    """Критерий выбора"""
    model_config = ConfigDict(frozen=True)

    name: str
    category: str
    base_scores: ScoreTriple
    description: str
    is_special: bool = False


class SpecialCriterionSpec(BaseModel):
    """
    Описание спецкритерия: короткий префикс для кнопок, варианты
    значений (в порядке индексов) и их баллы.
    """
    model_config = ConfigDict(frozen=True)

    criterion: str
    prefix: str
    prompt: str
    options: Tuple[str, ...]
    scores: Dict[str, ScoreTriple]

    def value_at(self, index: int) -> Optional[str]:
        if 0 <= index < len(self.options):
            return self.options[index]
        return None

    def scores_for(self, value: str) -> Optional[ScoreTriple]:
        wanted = value.strip().lower()
        for option, triple in self.scores.items():
            if option.lower() == wanted:
                return triple
        return None


class CriterionCatalog:
    """
    Неизменяемый упорядоченный каталог критериев

    Поиск по имени возвращает None (get) или бросает UnknownCriterionError
    (require); «пустой» критерий с нулевыми баллами не подставляется.
    """

    def __init__(self, criteria: List[Criterion], specials: Optional[List[SpecialCriterionSpec]] = None):
        by_name: Dict[str, Criterion] = {}
        for criterion in criteria:
            if criterion.name in by_name:
                raise ValueError(f"Duplicate criterion name: {criterion.name}")
            by_name[criterion.name] = criterion
        self._criteria: Tuple[Criterion, ...] = tuple(criteria)
        self._by_name = by_name

        self._specials: Dict[str, SpecialCriterionSpec] = {}
        self._specials_by_prefix: Dict[str, SpecialCriterionSpec] = {}
        for spec in specials or []:
            criterion = by_name.get(spec.criterion)
            if criterion is None or not criterion.is_special:
                raise ValueError(f"Special spec refers to a non-special criterion: {spec.criterion}")
            if spec.prefix in self._specials_by_prefix:
                raise ValueError(f"Duplicate special prefix: {spec.prefix}")
            self._specials[spec.criterion] = spec
            self._specials_by_prefix[spec.prefix] = spec

    @classmethod
    def default(cls) -> "CriterionCatalog":
        return cls(list(DEFAULT_CRITERIA), list(DEFAULT_SPECIALS))

    def __iter__(self) -> Iterator[Criterion]:
        return iter(self._criteria)

    def __len__(self) -> int:
        return len(self._criteria)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    @property
    def names(self) -> List[str]:
        return [c.name for c in self._criteria]

    def get(self, name: str) -> Optional[Criterion]:
        return self._by_name.get(name)

    def require(self, name: str) -> Criterion:
        criterion = self._by_name.get(name)
        if criterion is None:
            logger.error("Criterion not found in catalog", extra={"criterion": name})
            raise UnknownCriterionError(name)
        return criterion

    def is_special(self, name: str) -> bool:
        criterion = self._by_name.get(name)
        return bool(criterion and criterion.is_special)

    def special_spec(self, name: str) -> Optional[SpecialCriterionSpec]:
        return self._specials.get(name)

    def special_spec_by_prefix(self, prefix: str) -> Optional[SpecialCriterionSpec]:
        return self._specials_by_prefix.get(prefix)

    @property
    def special_prefixes(self) -> List[str]:
        return list(self._specials_by_prefix)

    def special_value(self, prefix: str, index: int) -> Optional[str]:
        spec = self._specials_by_prefix.get(prefix)
        if spec is None:
            return None
        return spec.value_at(index)

    def special_scores(self, name: str, value: str) -> Optional[ScoreTriple]:
        spec = self._specials.get(name)
        if spec is None:
            return None
        return spec.scores_for(value)


DEFAULT_CRITERIA: Tuple[Criterion, ...] = (
    Criterion(
        name="Юрисдикция данных",
        category="Регуляторные и безопасность",
        base_scores=ScoreTriple.of(8, 5, 4),
        description="Насколько важна локализация данных и соответствие местным законам.",
    ),
    Criterion(
        name="Отраслевые стандарты",
        category="Регуляторные и безопасность",
        base_scores=ScoreTriple.of(9, 8, 5),
        description="Требования к сертификации и соответствию отраслевым нормам.",
    ),
    Criterion(
        name="Физическая безопасность",
        category="Регуляторные и безопасность",
        base_scores=ScoreTriple.of(5, 4, 3),
        description="Насколько важно физическое расположение серверов и меры их защиты.",
    ),
    Criterion(
        name="Объём данных",
        category="Технические",
        base_scores=ZERO_SCORES,
        description="Объём хранимых данных (зависит от масштаба).",
        is_special=True,
    ),
    Criterion(
        name="Латентность",
        category="Технические",
        base_scores=ScoreTriple.of(8, 6, 5),
        description="Требования к задержкам при доступе к данным.",
    ),
    Criterion(
        name="Вариативность нагрузки",
        category="Технические",
        base_scores=ScoreTriple.of(9, 8, 8),
        description="Насколько часто и сильно меняется нагрузка на БД.",
    ),
    Criterion(
        name="Начальные инвестиции",
        category="Экономические",
        base_scores=ScoreTriple.of(3, 4, 8),
        description="Начальные затраты на развёртывание.",
    ),
    Criterion(
        name="Постоянные затраты",
        category="Экономические",
        base_scores=ScoreTriple.of(7, 8, 9),
        description="Регулярные расходы на поддержку, лицензии и т.д.",
    ),
    Criterion(
        name="Срок использования",
        category="Экономические",
        base_scores=ZERO_SCORES,
        description="Как долго планируется использовать систему (зависит от срока).",
        is_special=True,
    ),
    Criterion(
        name="Квалификация персонала",
        category="Организационные",
        base_scores=ScoreTriple.of(7, 8, 9),
        description="Есть ли в команде экспертиза по управлению и настройке БД.",
    ),
    Criterion(
        name="Время до запуска",
        category="Организационные",
        base_scores=ScoreTriple.of(8, 9, 9),
        description="Насколько быстро нужно развернуть систему.",
    ),
    Criterion(
        name="Масштабируемость",
        category="Организационные",
        base_scores=ScoreTriple.of(7, 9, 9),
        description="Требования к быстрому масштабированию под нагрузку.",
    ),
)

DEFAULT_SPECIALS: Tuple[SpecialCriterionSpec, ...] = (
    SpecialCriterionSpec(
        criterion="Объём данных",
        prefix="sdata",
        prompt=(
            "Укажите объем данных:\n\n"
            "• *Малый* — до 100 ГБ данных (несколько таблиц, тысячи-миллионы записей)\n"
            "• *Средний* — от 100 ГБ до 1 ТБ (множество таблиц, миллионы-миллиарды записей)\n"
            "• *Большой* — более 1 ТБ (сложная структура, миллиарды записей и выше)"
        ),
        options=("Малый", "Средний", "Большой"),
        scores={
            "Малый": ScoreTriple.of(8, 7, 9),
            "Средний": ScoreTriple.of(6, 8, 9),
            "Большой": ScoreTriple.of(4, 8, 9),
        },
    ),
    SpecialCriterionSpec(
        criterion="Срок использования",
        prefix="susage",
        prompt=(
            "Укажите планируемый срок использования:\n\n"
            "• *Краткосрочный* — до 1-2 лет (временные проекты, эксперименты)\n"
            "• *Долгосрочный* — от 3 лет и более (постоянные, долгосрочные системы)"
        ),
        options=("Краткосрочный", "Долгосрочный"),
        scores={
            "Краткосрочный": ScoreTriple.of(4, 6, 9),
            "Долгосрочный": ScoreTriple.of(9, 7, 6),
        },
    ),
)

from __future__ import annotations

from typing import Iterator

import optuna
import pandas as pd

from wfopt.core.parameters import ChoiceParameter, Parameter, ParameterSet, StaticParameter, StepParameter


def _distribution(p: Parameter) -> optuna.distributions.BaseDistribution:
    if isinstance(p, StepParameter):
        if p.is_integer:
            return optuna.distributions.IntDistribution(int(p.min_value), int(p.max_value), step=int(p.step))
        return optuna.distributions.FloatDistribution(float(p.min_value), float(p.max_value), step=float(p.step))
    if isinstance(p, ChoiceParameter):
        return optuna.distributions.CategoricalDistribution(list(p.choices))
    if isinstance(p, StaticParameter):
        return optuna.distributions.CategoricalDistribution([p.value])
    raise TypeError(f"unsupported parameter type: {type(p).__name__}")


class OptunaStepper:
    """
    Stepper backed by Optuna's ask/tell interface, one study per in-sample
    iteration (seeded with `seed + index`).

    Every trial of an iteration is asked when the schedule is planned, before
    any job has run, so the sampler gets no feedback inside an iteration: with
    TPE the first `n_startup_trials` are random anyway, and the rest are drawn
    from an empty history. Scores come back through `tell`, keyed by the
    parameter set id the strategy bound to the trial.
    """

    def __init__(
        self,
        *,
        n_trials: int,
        sampler: str = "tpe",
        seed: int | None = None,
        direction: str = "maximize",
        study_name: str | None = None,
        storage_url: str | None = None,
    ):
        if n_trials <= 0:
            raise ValueError("n_trials must be > 0")
        if direction not in ("maximize", "minimize"):
            raise ValueError("direction must be 'maximize' or 'minimize'")
        sampler_l = sampler.lower()
        if sampler_l not in ("tpe", "random"):
            raise ValueError("sampler must be 'tpe' or 'random'")

        self.n_trials = int(n_trials)
        self.sampler = sampler_l
        self.seed = seed
        self.direction = direction
        self.study_name = study_name
        self.storage_url = storage_url

        self.studies: dict[int, optuna.Study] = {}
        self._pending: dict[int, tuple[optuna.Study, optuna.trial.Trial]] = {}
        self._last: tuple[optuna.Study, optuna.trial.Trial] | None = None

    def _new_study(self, index: int) -> optuna.Study:
        seed = None if self.seed is None else self.seed + index
        if self.sampler == "tpe":
            opt_sampler = optuna.samplers.TPESampler(seed=seed)
        else:
            opt_sampler = optuna.samplers.RandomSampler(seed=seed)
        name = None if self.study_name is None else f"{self.study_name}_is{index + 1}"
        return optuna.create_study(
            study_name=name,
            storage=self.storage_url,
            load_if_exists=self.storage_url is not None,
            direction=self.direction,
            sampler=opt_sampler,
        )

    def __call__(self, parameters: list[Parameter], index: int = 0) -> Iterator[dict]:
        distributions = {p.name: _distribution(p) for p in parameters}
        study = self._new_study(index)
        self.studies[index] = study
        for _ in range(self.n_trials):
            trial = study.ask(distributions)
            self._last = (study, trial)
            yield dict(trial.params)

    def bind(self, parameter_set: ParameterSet) -> None:
        """Attach the most recently asked trial to the parameter set built from it."""
        if self._last is None:
            raise RuntimeError("bind called before any trial was asked")
        self._pending[parameter_set.id] = self._last
        self._last = None

    def tell(self, parameter_set: ParameterSet, value: float) -> None:
        entry = self._pending.pop(parameter_set.id, None)
        if entry is None:
            return
        study, trial = entry
        study.tell(trial, float(value))

    def trials_frame(self) -> pd.DataFrame:
        rows = []
        for index in sorted(self.studies):
            for t in self.studies[index].get_trials(deepcopy=False):
                if t.state != optuna.trial.TrialState.COMPLETE:
                    continue
                row = {"iteration": index + 1}
                row.update(t.params)
                row["trial_number"] = t.number
                row["value"] = t.value
                rows.append(row)
        return pd.DataFrame(rows)

"""
State-Space Movement Models for Flight Path Estimation

This module implements the PyMC difference correlated random walk (DCRW)
model and its multi-state hidden Markov extension.

Process model:
    x(t) = x(t-1) + γ·(x(t-1) - x(t-2)) + ε(t),   ε(t) ~ N(0, diag(σ²))

Observation model:
    y(t) ~ t₅(w(t)·x(t) + (1 - w(t))·x(t-1), s(t))

where:
    x(t): True (latent) location at observation t
    y(t): Point estimate of the location stage
    s(t): Standard error of the point estimate
    w(t): Fraction of the sampling interval elapsed at observation t
    γ: Move persistence (state-specific in the multi-state model)
    σ: Process noise per coordinate
"""

import pymc as pm
import pytensor
import pytensor.tensor as pt
import numpy as np
import arviz as az
import pandas as pd
import xarray as xr
from typing import Dict, List, Optional
import pickle
import warnings

# Named dimensions of a posterior draws ensemble
DRAW_DIMS = ('draw', 'time', 'coord')
COORDS = ['lon', 'lat']

DEFAULT_SAMPLE_KWARGS = {
    'draws': 1000,
    'tune': 1000,
    'chains': 4,
    'cores': 4,
    'target_accept': 0.9,
    'progressbar': False
}


def observation_mean(x, w):
    """
    Expected point estimate: interpolation between the current and previous
    true location. Rows with w = 1 (first observation of a track) use the
    current location only.
    """
    x_prev = pt.concatenate([x[:1], x[:-1]], axis=0)
    return w * x + (1 - w) * x_prev


def transition_log_matrices(X, beta):
    """
    Log transition probability matrices from covariates.

    Off-diagonal entries are exp(X[t] @ beta[i, j]), diagonal entries are
    fixed at 1 and every row is renormalised to sum to 1.

    Parameters
    ----------
    X : array-like
        (T, K) covariate matrix
    beta : array-like
        (S, S, K) regression coefficients

    Returns
    -------
    log_gamma : TensorVariable
        (T, S, S) log probabilities of moving from state i to state j
    """
    X = pt.as_tensor_variable(X)
    beta = pt.as_tensor_variable(beta)
    n_states = beta.shape[0]

    eta = pt.tensordot(X, beta, axes=[[1], [2]])
    # exp(0) = 1 on the diagonal
    rates = pt.exp(eta * (1 - pt.eye(n_states)))
    probs = rates / rates.sum(axis=2, keepdims=True)

    return pt.log(probs)


def _forward_step(log_em_t, log_gamma_t, reset_t, log_alpha_prev, log_delta):
    log_alpha_t = pt.switch(
        reset_t,
        log_delta + log_em_t,
        pt.logsumexp(log_alpha_prev[:, None] + log_gamma_t, axis=0) + log_em_t
    )
    return log_alpha_t


def forward_log_likelihood(log_em, log_gamma, reset, end_idx):
    """
    Marginal log-likelihood of the state paths (forward algorithm).

    The recursion runs over the concatenated steps of all tracks and is
    restarted from a uniform initial distribution wherever `reset` is set.

    Parameters
    ----------
    log_em : array-like
        (T, S) log density of each step under each state
    log_gamma : array-like
        (T, S, S) log transition matrices into each step
    reset : array-like
        (T,) 1 at the first step of a track, else 0
    end_idx : array-like
        Index of the last step of each track

    Returns
    -------
    loglik : TensorVariable
        Sum over tracks of the terminal log-likelihoods
    """
    log_em = pt.as_tensor_variable(log_em)
    log_gamma = pt.as_tensor_variable(log_gamma)
    reset = pt.as_tensor_variable(np.asarray(reset, dtype='int8'))

    log_delta = pt.log(pt.ones_like(log_em[0]) / log_em.shape[1])

    log_alpha = pytensor.scan(
        fn=_forward_step,
        sequences=[log_em, log_gamma, reset],
        outputs_info=[pt.zeros_like(log_delta)],
        non_sequences=[log_delta],
        return_updates=False
    )

    return pt.logsumexp(log_alpha[np.asarray(end_idx, dtype=int)], axis=1).sum()


class _TrackModelBase:
    """
    Shared fitting, diagnostics and persistence of the movement models.

    Attributes
    ----------
    data : dict
        Track bundle from data_preprocessing
    model : pm.Model
        PyMC model object
    trace : az.InferenceData
        MCMC trace after fitting
    """

    parameter_names: List[str] = ['sigma', 'gamma']

    def __init__(self, data_dict: Dict):
        self.data = data_dict
        self.model = None
        self.trace = None
        self.build_kwargs = {}

    def build_model(self, **kwargs) -> pm.Model:
        """Build the PyMC graph; implemented by each model class."""
        raise NotImplementedError

    def fit(self, **sample_kwargs) -> az.InferenceData:
        """
        Fit model using MCMC (NUTS sampler).

        Parameters
        ----------
        **sample_kwargs
            Passed to pm.sample(), merged over DEFAULT_SAMPLE_KWARGS

        Returns
        -------
        trace : az.InferenceData
            Posterior samples and diagnostics
        """
        if self.model is None:
            raise ValueError("Model not built. Call build_model() first.")

        kwargs = {**DEFAULT_SAMPLE_KWARGS, **sample_kwargs}

        with self.model:
            self.trace = pm.sample(return_inferencedata=True, **kwargs)

        return self.trace

    def _location_draws(self, start: int, end: int) -> xr.DataArray:
        if self.trace is None:
            raise ValueError("No trace available. Run fit() first.")

        location = self.trace.posterior['location'].isel(time=slice(start, end))
        location = location.stack(sample=('chain', 'draw')).transpose('sample', 'time', 'coord')

        return xr.DataArray(
            location.values,
            dims=DRAW_DIMS,
            coords={
                'draw': np.arange(location.shape[0]),
                'time': self.data['time'][start:end],
                'coord': COORDS
            },
            name='location'
        )

    def draws(self) -> xr.DataArray:
        """
        Posterior draws of the true locations.

        Returns
        -------
        draws : xr.DataArray
            Dims ('draw', 'time', 'coord'), chains stacked into 'draw'
        """
        return self._location_draws(0, self.data['N'])

    def check_convergence(self, var_names: Optional[list] = None) -> pd.DataFrame:
        """
        Check MCMC convergence diagnostics.

        Parameters
        ----------
        var_names : list of str, optional
            Variables to check. If None, checks the movement parameters.

        Returns
        -------
        summary : pd.DataFrame
            Summary statistics with R-hat, ESS, etc.
        """
        if self.trace is None:
            raise ValueError("No trace available. Run fit() first.")

        if var_names is None:
            var_names = self.parameter_names

        print("\n" + "="*80)
        print("Convergence Diagnostics")
        print("="*80)

        summary = az.summary(self.trace, var_names=var_names)

        max_rhat = summary['r_hat'].max()
        print(f"\nMax R-hat: {max_rhat:.4f} (should be < 1.01)")

        if max_rhat > 1.01:
            problem_vars = summary[summary['r_hat'] > 1.01].index.tolist()
            warnings.warn(f"Convergence issues detected for: {problem_vars}")
        else:
            print("  All R-hat values < 1.01")

        min_ess_bulk = summary['ess_bulk'].min()
        min_ess_tail = summary['ess_tail'].min()
        print(f"\nMin ESS (bulk): {min_ess_bulk:.0f} (should be > 400)")
        print(f"Min ESS (tail): {min_ess_tail:.0f} (should be > 400)")

        if min_ess_bulk < 400 or min_ess_tail < 400:
            print("  WARNING: Low effective sample size!")

        print("="*80)

        return summary

    def extract_parameters(self, hdi_prob: float = 0.9) -> Dict:
        """
        Extract movement parameter estimates with credible intervals.

        Parameters
        ----------
        hdi_prob : float, default=0.9
            Probability for highest density interval

        Returns
        -------
        results : dict
            Mapping of parameter (e.g. 'sigma[lon]') → mean, sd, hdi_lower, hdi_upper
        """
        if self.trace is None:
            raise ValueError("No trace available. Run fit() first.")

        summary = az.summary(self.trace, var_names=self.parameter_names, hdi_prob=hdi_prob)
        lower_col, upper_col = [c for c in summary.columns if c.startswith('hdi_')]

        return {
            param: {
                'mean': summary.loc[param, 'mean'],
                'sd': summary.loc[param, 'sd'],
                'hdi_lower': summary.loc[param, lower_col],
                'hdi_upper': summary.loc[param, upper_col]
            }
            for param in summary.index
        }

    def save(self, filename: str):
        """Save data bundle and trace to file."""
        data = {
            'data_dict': self.data,
            'build_kwargs': self.build_kwargs,
            'trace': self.trace
        }
        with open(filename, 'wb') as f:
            pickle.dump(data, f)

    @classmethod
    def load(cls, filename: str):
        """Load data bundle and trace from file and rebuild the model."""
        with open(filename, 'rb') as f:
            data = pickle.load(f)

        model_instance = cls(data['data_dict'])
        model_instance.build_model(verbose=False, **data['build_kwargs'])
        model_instance.trace = data['trace']

        return model_instance


class DCRWModel(_TrackModelBase):
    """
    Difference correlated random walk model for a single track.

    Coordinates are centred on the mean observed location before modelling;
    the 'location' deterministic reports the de-centred true locations.

    Attributes
    ----------
    track_id : object
        Individual identifier
    loc_center : np.ndarray
        (2,) mean observed lon/lat
    """

    def __init__(self, data_dict: Dict):
        """
        Initialize DCRW model.

        Parameters
        ----------
        data_dict : dict
            Track bundle from data_preprocessing.bundle_track_data()
        """
        super().__init__(data_dict)
        if data_dict['N'] < 3:
            raise ValueError(f"At least 3 observations are required, got {data_dict['N']}.")

        self.track_id = data_dict.get('ID')
        self.loc_center = data_dict['loc'].mean(axis=0)
        self.loc_centered = data_dict['loc'] - self.loc_center

    def build_model(self,
                    sigma_rate: float = 20.0,
                    nu: float = 5.0,
                    verbose: bool = True) -> pm.Model:
        """
        Build PyMC DCRW model.

        Parameters
        ----------
        sigma_rate : float, default=20.0
            Rate of the exponential prior on the process noise
        nu : float, default=5.0
            Degrees of freedom of the Student-t observation model
        verbose : bool, default=True
            Print progress

        Returns
        -------
        model : pm.Model
            Configured PyMC model
        """
        self.build_kwargs = {'sigma_rate': sigma_rate, 'nu': nu}
        n_obs = self.data['N']
        loc = self.loc_centered
        w = self.data['w'][:, None]

        if verbose:
            print(f"\nBuilding DCRW model for ID {self.track_id} ({n_obs} observations)")

        coords = {'time': np.arange(n_obs), 'coord': COORDS}

        with pm.Model(coords=coords) as model:
            # Priors
            sigma = pm.Exponential('sigma', lam=sigma_rate, dims='coord')
            gamma = pm.Uniform('gamma', lower=0.0, upper=1.0)

            # True locations
            x = pm.Flat('x', dims=('time', 'coord'), initval=loc)

            # Process model
            step_logp = pm.logp(pm.Normal.dist(mu=x[0], sigma=sigma), x[1])
            x_pred = x[1:-1] + gamma * (x[1:-1] - x[:-2])
            crw_logp = pm.logp(pm.Normal.dist(mu=x_pred, sigma=sigma), x[2:])
            pm.Potential('process', step_logp.sum() + crw_logp.sum())

            # Observation model
            pm.StudentT('loc_obs',
                        nu=nu,
                        mu=observation_mean(x, w),
                        sigma=self.data['sigma'],
                        observed=loc,
                        dims=('time', 'coord'))

            pm.Deterministic('location', x + self.loc_center, dims=('time', 'coord'))

        self.model = model
        return model


class MultiStateDCRWModel(_TrackModelBase):
    """
    DCRW model with discrete behavioural states (hidden Markov model).

    Move persistence γ depends on the state. Transition probabilities are
    log-linear in the covariates. All tracks share the movement and transition
    parameters; the state sequence of every track is marginalised with its
    own forward recursion.

    Attributes
    ----------
    n_states : int
        Number of behavioural states
    loc_center : np.ndarray
        (N, 2) mean observed lon/lat of the track of each row
    """

    parameter_names = ['sigma', 'gamma', 'beta']

    def __init__(self, data_dict: Dict):
        """
        Initialize multi-state model.

        Parameters
        ----------
        data_dict : dict
            Structured data from data_preprocessing.structure_multi_track_data()
        """
        super().__init__(data_dict)
        self.n_states = data_dict['n_states']
        self.ids = data_dict['ids']

        lengths = data_dict['track_end'] - data_dict['track_start']
        if np.any(lengths < 3):
            raise ValueError("Every track needs at least 3 observations.")

        self.loc_center = np.zeros_like(data_dict['loc'])
        for start, end in zip(data_dict['track_start'], data_dict['track_end']):
            self.loc_center[start:end] = data_dict['loc'][start:end].mean(axis=0)
        self.loc_centered = data_dict['loc'] - self.loc_center

        self._build_step_index()

    def _build_step_index(self):
        """Index the steps at which the state-dependent process applies."""
        starts = self.data['track_start']
        ends = self.data['track_end']

        self.second_idx = starts + 1
        self.hmm_idx = np.concatenate([np.arange(s + 2, e) for s, e in zip(starts, ends)])
        self.reset = np.concatenate([np.arange(s + 2, e) == s + 2 for s, e in zip(starts, ends)])
        self.end_idx = np.cumsum(ends - starts - 2) - 1

    def build_model(self,
                    sigma_rate: float = 20.0,
                    nu: float = 5.0,
                    beta_prior_sd: float = 1.5,
                    verbose: bool = True) -> pm.Model:
        """
        Build PyMC multi-state DCRW model.

        Parameters
        ----------
        sigma_rate : float, default=20.0
            Rate of the exponential prior on the process noise
        nu : float, default=5.0
            Degrees of freedom of the Student-t observation model
        beta_prior_sd : float, default=1.5
            Prior SD of the transition regression coefficients
        verbose : bool, default=True
            Print progress

        Returns
        -------
        model : pm.Model
            Configured PyMC model
        """
        self.build_kwargs = {'sigma_rate': sigma_rate, 'nu': nu, 'beta_prior_sd': beta_prior_sd}
        n_obs = self.data['N']
        n_states = self.n_states
        X = self.data['X']
        loc = self.loc_centered
        w = self.data['w'][:, None]

        if verbose:
            print(f"\nBuilding multi-state DCRW model")
            print(f"  Tracks: {self.data['n_tracks']}")
            print(f"  States: {n_states}")
            print(f"  Covariates: {X.shape[1]} (including intercept)")
            print(f"  Total observations: {n_obs}")

        coords = {
            'time': np.arange(n_obs),
            'coord': COORDS,
            'state': np.arange(n_states)
        }

        with pm.Model(coords=coords) as model:
            # ============================================================
            # MOVEMENT PARAMETERS
            # ============================================================

            sigma = pm.Exponential('sigma', lam=sigma_rate, dims='coord')

            # Ordered persistence in (0, 1) so states cannot swap labels
            gamma_increments = pm.Dirichlet('gamma_increments', a=np.ones(n_states + 1))
            gamma = pm.Deterministic('gamma', pt.cumsum(gamma_increments)[:-1], dims='state')

            # ============================================================
            # TRANSITION PARAMETERS
            # ============================================================

            beta = pm.Normal('beta', mu=0.0, sigma=beta_prior_sd,
                             shape=(n_states, n_states, X.shape[1]))

            # ============================================================
            # PROCESS MODEL (STATE-DEPENDENT)
            # ============================================================

            x = pm.Flat('x', dims=('time', 'coord'), initval=loc)

            step_logp = pm.logp(pm.Normal.dist(mu=x[self.second_idx - 1], sigma=sigma),
                                x[self.second_idx])
            pm.Potential('first_step', step_logp.sum())

            x_prev = x[self.hmm_idx - 1]
            displacement = x_prev - x[self.hmm_idx - 2]
            log_em = pt.stack([
                pm.logp(pm.Normal.dist(mu=x_prev + gamma[s] * displacement, sigma=sigma),
                        x[self.hmm_idx]).sum(axis=1)
                for s in range(n_states)
            ], axis=1)

            log_gamma = transition_log_matrices(X[self.hmm_idx], beta)
            pm.Potential('hmm', forward_log_likelihood(log_em, log_gamma,
                                                       self.reset, self.end_idx))

            # ============================================================
            # OBSERVATION MODEL
            # ============================================================

            pm.StudentT('loc_obs',
                        nu=nu,
                        mu=observation_mean(x, w),
                        sigma=self.data['sigma'],
                        observed=loc,
                        dims=('time', 'coord'))

            pm.Deterministic('location', x + self.loc_center, dims=('time', 'coord'))

        self.model = model
        return model


class PyMCSampler:
    """
    Fits a movement model to a data bundle with PyMC's NUTS sampler.

    Any object with the same fit() signature can replace it in
    track.track() and track.track_multistate().
    """

    def __init__(self, model_kwargs: Optional[Dict] = None, verbose: bool = False):
        """
        Parameters
        ----------
        model_kwargs : dict, optional
            Keyword arguments for model.build_model()
        verbose : bool, default=False
            Print model building progress
        """
        self.model_kwargs = {} if model_kwargs is None else model_kwargs
        self.verbose = verbose

    def fit(self, model, data: Dict, options: Dict):
        """
        Build and sample a model.

        Parameters
        ----------
        model : type
            Model class (DCRWModel or MultiStateDCRWModel)
        data : dict
            Data bundle for the model class
        options : dict
            Passed verbatim to pm.sample()

        Returns
        -------
        fit : DCRWModel or MultiStateDCRWModel
            Fitted model exposing draws() and save()
        """
        instance = model(data)
        instance.build_model(verbose=self.verbose, **self.model_kwargs)
        instance.fit(**options)
        return instance

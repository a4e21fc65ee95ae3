"""
Match the ensembles of the up- and down-looking instruments. Both instruments run on their own clocks and may ping at
different rates, so ensembles are optionally resampled onto the timing of the other instrument before the lag
maximising the correlation of their vertical velocities is determined.


ladcpmerge.process_timing
--------------------------
check_ping_rates
    Warns when ping rates vary within an instrument or differ between instruments.
resample_to
    Resamples an instrument dataset onto another time base using the nearest ensemble.
vertical_velocity_series
    Median vertical velocity of each ensemble.
get_lag
    Finds the ensemble lag with the highest correlation between two vertical velocity series.
align_instruments
    Runs the above for a pair of instruments and returns the joint ensemble indices.

"""

import warnings
import numpy as np
import pandas as pd
from .tools import plog, pwarn, nearest_index

warnings.filterwarnings(action='ignore', message='All-NaN slice encountered')
warnings.filterwarnings(action='ignore', message='Mean of empty slice')

SECONDS_PER_DAY = 86400


def check_ping_rates(time_down, time_up, tolerance, messages=None):
    """
    Compares ping intervals within and between instruments.


    Inputs
    ----------
    time_down, time_up : np.array
        Ensemble times of both instruments in days.
    tolerance : float
        Acceptable difference in ping interval in s.
    messages : list
        Warnings are appended to this list.


    Outputs
    -------
    differ : bool
        True if the median ping intervals of the instruments differ by more than tolerance.

    """
    tolerance = tolerance / SECONDS_PER_DAY
    for name, time in [('down', time_down), ('up', time_up)]:
        dt = np.diff(time)
        if np.count_nonzero(np.isfinite(dt)) == 0:
            continue
        if abs(np.nanmax(dt) + np.nanmax(-dt)) > tolerance:
            pwarn(f'Ping rate varies in {name} instrument', messages)
            plog(f'>   Min {name} ping rate : {-SECONDS_PER_DAY * np.nanmax(-dt):.3f}  max {name} ping rate : {SECONDS_PER_DAY * np.nanmax(dt):.3f}')

    dt_down = np.diff(time_down)
    dt_up = np.diff(time_up)
    differ = bool(abs(np.nanmedian(dt_down) - np.nanmedian(dt_up)) > tolerance)
    if differ:
        pwarn('Average ping rates differ between instruments', messages)
        plog(f'>   Avg down ping rate : {SECONDS_PER_DAY * np.nanmean(dt_down):.3f}  avg up ping rate : {SECONDS_PER_DAY * np.nanmean(dt_up):.3f}')
    return differ


def resample_to(ds, target_time, gap_limit):
    """
    Resamples an instrument dataset onto target_time by picking for each target time the ensemble closest in time.
    Target times beyond the end of the dataset use its last ensemble.
    Ensembles further than gap_limit from their target time are set to NaN rather than paired.


    Inputs
    ----------
    ds : xr.Dataset
        Instrument dataset.
    target_time : np.array
        Times in days onto which ds is resampled.
    gap_limit : float
        Maximum time difference in s.


    Outputs
    -------
    ds : xr.Dataset
        Dataset with one ensemble per target time, julian_day equal to target_time.

    """
    target_time = np.asarray(target_time, dtype=float)
    source_time = ds['julian_day'].values
    idx = nearest_index(source_time, target_time)
    bad = ~(np.abs(target_time - source_time[idx]) <= gap_limit / SECONDS_PER_DAY)
    plog(f'    {np.count_nonzero(bad)} resampled ensembles exceed the {gap_limit}s time gap and are discarded')

    out = ds.isel(time=idx)
    out = out.assign_coords(time=('time', np.arange(len(target_time))))
    for name in list(out.data_vars):
        dims = out[name].dims
        if 'time' in dims:
            values = np.moveaxis(out[name].values.astype(float), dims.index('time'), 0)
            values[bad] = np.nan
            out[name] = (dims, np.moveaxis(values, 0, dims.index('time')))
    out['julian_day'] = ('time', target_time)
    return out


def vertical_velocity_series(ds):
    """
    Median vertical velocity across bins of each ensemble.
    """
    return np.nanmedian(ds['velocity'].values[:, :, 2], axis=1)


def _overlap(lag, n_reference, n_other):
    """
    Indices of the reference and other series paired when other is shifted by lag.
    """
    if lag >= 0:
        n = max(min(n_reference, n_other - lag), 0)
        return np.arange(n), np.arange(n) + lag
    n = max(min(n_reference + lag, n_other), 0)
    return np.arange(n) - lag, np.arange(n)


def get_lag(w_reference, w_other, max_lag):
    """
    Finds the integer lag maximising the correlation between w_reference[i] and w_other[i + lag].


    Inputs
    ----------
    w_reference, w_other : np.array
        Vertical velocity series, may contain NaN.
    max_lag : int
        Lags between -max_lag and max_lag are searched.


    Outputs
    -------
    lag : int
        Best lag. Positive if the other series is delayed relative to the reference.
    correlation : float
        Correlation coefficient at the best lag, NaN if no lag could be evaluated.
    i_reference, i_other : np.array
        Indices of both series paired at the best lag.

    """
    reference = pd.Series(np.asarray(w_reference, dtype=float))
    other = pd.Series(np.asarray(w_other, dtype=float))
    max_lag = int(max(0, min(max_lag, min(len(reference), len(other)) - 2)))
    lags = np.arange(-max_lag, max_lag + 1)

    correlations = np.array([reference.corr(other.shift(-lag), min_periods=3) for lag in lags])
    if np.count_nonzero(np.isfinite(correlations)) == 0:
        lag = 0
        correlation = np.nan
    else:
        best = int(np.nanargmax(correlations))
        lag = int(lags[best])
        correlation = float(np.clip(correlations[best], -1, 1))

    i_reference, i_other = _overlap(lag, len(reference), len(other))
    return lag, correlation, i_reference, i_other


def align_instruments(down, up, options, messages=None):
    """
    Aligns up- and down-looking instrument ensembles.


    Inputs
    ----------
    down, up : xr.Dataset
        Instrument datasets in earth coordinates.
    options : dict
        Set of options for ladcpmerge, created by the ladcpmerge.tools.get_options() function.
    messages : list
        Warnings are appended to this list.


    Outputs
    -------
    down, up : xr.Dataset
        Instrument datasets, one of them possibly resampled onto the timing of the other.
    i_down, i_up : np.array
        Indices of the joint ensembles of both instruments.
    lag : int
        Lag of the up-looker relative to the down-looker in ensembles.
    correlation : float
        Correlation of the vertical velocities at that lag.

    """
    if options['up_down_time_offset'] != 0:
        plog(f'    Adding {options["up_down_time_offset"]}s to the up-looker time')
        up = up.copy()
        up['julian_day'] = up['julian_day'] + options['up_down_time_offset'] / SECONDS_PER_DAY

    time_down = down['julian_day'].values
    time_up = up['julian_day'].values
    differ = check_ping_rates(time_down, time_up, options['ping_rate_tolerance'], messages)

    method = options['resample_timing']
    if method == 'auto':
        method = 'none'
        if differ:
            if np.nanmean(np.diff(time_up)) > np.nanmean(np.diff(time_down)):
                method = 'up_to_down'
            else:
                method = 'down_to_up'

    if method == 'up_to_down':
        plog("    Resampling up instrument to down instrument's timing.")
        up = resample_to(up, time_down, options['time_gap_limit'])
    elif method == 'down_to_up':
        plog("    Resampling down instrument to up instrument's timing.")
        down = resample_to(down, time_up, options['time_gap_limit'])
    elif method != 'none':
        raise ValueError(f"Unknown resample_timing option {method}")

    lag, correlation, i_down, i_up = get_lag(
        vertical_velocity_series(down),
        vertical_velocity_series(up),
        options['maximum_lag'],
    )
    plog(f'    Shifting ADCP timeseries by {lag} ensembles')
    plog(f'    Time-lag: {lag}  correlation: {correlation:.3f}')
    if abs(lag) > options['large_lag_threshold']:
        pwarn('Found LARGE timing difference between ADCPs !', messages)
    if not correlation >= options['lag_correlation_threshold']:
        pwarn(f'Low correlation of {correlation:.2f} between up and down vertical velocities', messages)
    plog(f'    Number of joint ensembles is : {len(i_down)}')
    return down, up, i_down, i_up, lag, correlation

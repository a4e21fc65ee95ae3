"""
Assemble one lowered ADCP cast from a down-looking and optionally an up-looking instrument.


ladcpmerge.process_cast
--------------------------
process
    The main function which will run through the whole cast processing from loading to merged profile.
load_data
    Loads an instrument from file, or accepts an already-built instrument dataset.
prepare_instrument
    Rotation, bin averaging, beam medians and quality control of a single instrument.
correct_year
    Replaces year 1900 time stamps reported by narrowband instruments.

"""

import warnings
import numpy as np
import pandas as pd
import xarray as xr
from .records import fixed_leader, load_instrument, replace_sentinels, check_time_base
from .process_beams import rotate_to_earth, rotate_bottom_track
from .process_bins import is_high_frequency, average_bins
from .process_qc import remove_zero_records, check_blank, mask_bins, apply_percent_good, apply_error_velocity, clean_bottom_track
from .process_timing import align_instruments
from .process_merge import merge_profiles, check_three_beam, add_diagnostics
from .tools import plog, pwarn, get_options

warnings.filterwarnings(action='ignore', message='All-NaN slice encountered')


"""
Loading and single instrument processing
"""
def load_data(source, options, messages=None):
    """
    Returns an instrument dataset with dummy bottom track values replaced by NaN.


    Inputs
    ----------
    source : str or xr.Dataset
        Path to the instrument netcdf files (wildcards allowed), or an instrument dataset
        built with ladcpmerge.records.make_instrument().
    options : dict
        Set of options for ladcpmerge, created by the ladcpmerge.tools.get_options() function.
    messages : list
        Warnings are appended to this list.


    Outputs
    -------
    ds : xr.Dataset
        Instrument dataset.

    """
    if isinstance(source, xr.Dataset):
        check_time_base(source['julian_day'].values)
        return replace_sentinels(source.copy(deep=True), options['bottom_track_dummy'], messages)
    ds, multiple_files = load_instrument(source, options['bottom_track_dummy'], messages)
    if multiple_files:
        plog('    Concatenated several files, ensemble times are taken as recorded')
    return ds


def _beam_medians(ds, options):
    """
    Median target strength and correlation over beams, and the separately retained beams.
    """
    ds = ds.copy()
    ds['target_strength'] = (['time', 'bin'], np.nanmedian(ds['amplitude'].values, axis=2))
    ds['correlation_median'] = (['time', 'bin'], np.nanmedian(ds['correlation'].values, axis=2))
    for name, channel in [
        ('target_strength_beams', 'amplitude'),
        ('correlation_beams', 'correlation'),
        ('percent_good_beams', 'percent_good'),
    ]:
        beams = [b for b in options[f'save_{name}'] if 1 <= b <= 4]
        if len(beams) == 0:
            continue
        plog(f'    Saving {channel.replace("_", " ")} of beams {beams}')
        ds[name] = (['time', 'bin', f'{name}_beam'], ds[channel].values[:, :, np.array(beams) - 1])
        ds = ds.assign_coords({f'{name}_beam': (f'{name}_beam', beams)})
    return ds


def prepare_instrument(ds, looker, options, messages=None, backup=None):
    """
    Processes a single instrument up to the point where it can be merged.


    Inputs
    ----------
    ds : xr.Dataset
        Instrument dataset produced by ladcpmerge.process_cast.load_data().
    looker : str
        'down' or 'up', the role of the instrument on the rosette.
    options : dict
        Set of options for ladcpmerge, created by the ladcpmerge.tools.get_options() function.
    messages : list
        Warnings are appended to this list.
    backup : dict
        Unaveraged copies of high frequency instruments are stored in this dict.


    Outputs
    -------
    ds : xr.Dataset
        Instrument dataset in earth coordinates with target_strength and correlation_median variables.


    Notes
    -------
    .prepare_instrument() runs the following functions in this order
    1. remove_zero_records - narrowband instruments only
    2. check_blank - warns about ringing in the first bin
    3. rotate_bottom_track - bottom track velocities from beam to earth coordinates
    4. rotate_to_earth - velocities from beam to earth coordinates
    5. average_bins - high frequency instruments only
    6. apply_percent_good - removes bins with low 4-beam percent good
    7. mask_bins - removes the bins listed in options
    """
    fl = fixed_leader(ds)
    plog(f'    {looker}-looker: {fl.frequency}kHz {fl.family} with {fl.n_bins} bins of {fl.bin_length}m')
    if fl.orientation != looker:
        pwarn(f'Instrument used as {looker}-looker reports {fl.orientation} orientation', messages)

    if fl.family == 'narrowband':
        ds, n_removed = remove_zero_records(ds)
        if n_removed > 0:
            pwarn(f'Removed {n_removed} all-zero {looker}looker records', messages)

    mask = options[f'mask_{looker}_bins']
    check_blank(ds, mask, messages, looker)

    if looker == 'up' and options['up_down_distance'] != 0:
        plog(f'    Adding {options["up_down_distance"]}m distance between instruments')
        ds = ds.copy()
        ds.attrs['first_bin_distance'] = ds.attrs['first_bin_distance'] + options['up_down_distance']

    ds = rotate_bottom_track(ds, options)
    high_frequency = is_high_frequency(ds, options)
    if high_frequency and ds.attrs['coordinate_system'] == 'beam' and backup is not None:
        backup[f'{looker}_beam'] = ds.copy(deep=True)
    ds = rotate_to_earth(ds, options)

    if high_frequency:
        ds, unaveraged = average_bins(
            ds,
            options['high_frequency_bin_averaging'],
            options['high_frequency_extra_blank'],
        )
        if backup is not None:
            backup[looker] = unaveraged

    ds = _beam_medians(ds, options)
    ds = apply_percent_good(ds, options['QC_percent_good_threshold'], looker)
    ds = mask_bins(ds, mask)
    return ds


"""
Time
"""
def correct_year(profile, year, messages=None):
    """
    Narrowband instruments may report year 1900 in their time stamps. These are moved to the given year.


    Inputs
    ----------
    profile : xr.Dataset
        Merged profile with julian_day of shape (instrument, ensemble).
    year : int or None
        Year replacing 1900. A ValueError is raised if year 1900 is found and no year is given.
    messages : list
        Warnings are appended to this list.


    Outputs
    -------
    profile : xr.Dataset
        Same as input with corrected julian_day.

    """
    jd = profile['julian_day'].values
    times = pd.to_datetime(jd.ravel(), unit='D', origin='julian')
    wrong = np.asarray(times.year == 1900)
    if np.count_nonzero(wrong) == 0:
        return profile
    if year is None:
        raise ValueError('Instrument time stamps are in year 1900. Set the correct_year option.')

    pwarn(f'Found year 1900 time stamps, correcting to year {year}', messages)
    fixed = pd.DatetimeIndex([t.replace(year=year) if w else t for t, w in zip(times, wrong)])
    profile = profile.copy()
    profile['julian_day'] = (profile['julian_day'].dims, np.reshape(fixed.to_julian_date().values, np.shape(jd)))
    return profile


def _add_times(profile):
    jd = profile['julian_day'].values
    profile['datetime'] = (
        profile['julian_day'].dims,
        np.reshape(pd.to_datetime(jd.ravel(), unit='D', origin='julian').values, np.shape(jd)),
    )
    profile.attrs['start_time'] = float(np.nanmin(jd[0, :]))
    profile.attrs['end_time'] = float(np.nanmax(jd[0, :]))
    return profile


"""
Main
"""
def process(down_file_path, up_file_path=None, options=None):
    """
    Merge the down-looking and optionally up-looking instruments of a lowered ADCP cast into one profile.


    Inputs
    ----------
    down_file_path : str or xr.Dataset
        Path to the down-looking instrument netcdf files. Can handle wildcards through glob.
        Can also pass an instrument dataset directly.
    up_file_path : str or xr.Dataset, optional
        Same for the up-looking instrument. Single instrument casts leave it as None.
    options : dict
        Set of options for ladcpmerge, created by the ladcpmerge.tools.get_options() function.


    Outputs
    -------
    profile : xr.Dataset
        Merged profile with dimensions bin, ensemble and instrument. The warnings raised during processing
        are listed in profile.attrs['warnings'].
    backup : dict
        Unaveraged datasets of high frequency instruments, keyed by looker. Empty otherwise.


    Notes
    -------
    .process() runs the following functions in this order
    1. load_data and prepare_instrument - for the down-looker, then the up-looker
    2. align_instruments - time offset, ping rate check, resampling and lag between instruments
    3. merge_profiles - stacks up- and down-looker bins into one depth ordered profile
    4. check_three_beam, apply_error_velocity, clean_bottom_track - quality control of the merged profile
    5. add_diagnostics - tilt, weights, single ping error and instrument range
    6. correct_year - time stamps of narrowband instruments
    """
    # Load default options if not present.
    if not options:
        options = get_options(verbose=False)
        plog('Using default set of options. See ladcpmerge.tools.get_options() for settings.')

    messages = []
    backup = {}

    plog('Loading down-looking instrument')
    down = load_data(down_file_path, options, messages)
    down = prepare_instrument(down, 'down', options, messages, backup)
    instruments = {'down': down}

    up = None
    if up_file_path is not None:
        plog('Loading up-looking instrument')
        up = load_data(up_file_path, options, messages)
        up = prepare_instrument(up, 'up', options, messages, backup)

    # Match ensembles of both instruments.
    if up is not None:
        plog('Aligning instruments')
        down, up, i_down, i_up, lag, correlation = align_instruments(down, up, options, messages)
        instruments = {'down': down, 'up': up}
    else:
        i_down, i_up, lag, correlation = np.arange(len(down.time)), None, 0, np.nan

    plog('Merging instruments')
    profile = merge_profiles(down, up, i_down, i_up, options)
    profile.attrs['lag'] = int(lag)
    profile.attrs['lag_correlation'] = float(correlation)

    check_three_beam(profile, options['three_beam_warning_fraction'], messages)
    profile = apply_error_velocity(profile, options['QC_error_velocity_threshold'])
    profile = clean_bottom_track(profile, options)
    profile = add_diagnostics(profile, instruments, options)

    # Ensembles without down-looker time cannot be placed in the cast.
    _gd = np.isfinite(profile['julian_day'].values[0, :])
    if np.count_nonzero(~_gd) > 0:
        plog(f'    Removed {np.count_nonzero(~_gd)} ensembles without time')
        profile = profile.isel(ensemble=np.flatnonzero(_gd))
        profile = profile.assign_coords(ensemble=('ensemble', np.arange(np.count_nonzero(_gd))))

    profile = correct_year(profile, options['correct_year'], messages)
    profile = _add_times(profile)

    if options['clear_pressure']:
        plog('    Clearing pressure records')
        for name in ['pressure', 'pressure_std']:
            profile[name] = (profile[name].dims, np.zeros(np.shape(profile[name].values)))

    profile.attrs['warnings'] = messages
    plog(f'Finished processing with {len(messages)} warnings')
    return profile, backup

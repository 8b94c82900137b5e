"""
Test Suite for Pipeline Module
==============================

End-to-end runs over the sample datasets and their configurations.
"""

import io
import json

import numpy as np
import pandas as pd
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from trendpipe.data_loader import load_config
from trendpipe.errors import ParseError
from trendpipe.normalization import UNKNOWN
from trendpipe.pipeline import export_results, run_pipeline

REPO_ROOT = Path(__file__).parent.parent

FLAT_CSV = """INCIDENT_KEY,OCCUR_DATE,BORO,PRECINCT,STATISTICAL_MURDER_FLAG,PERP_AGE_GROUP,PERP_SEX,PERP_RACE,VIC_AGE_GROUP,VIC_SEX,VIC_RACE
1,01/01/2021,BRONX,40,false,18-24,M,BLACK,25-44,M,BLACK
2,01/02/2021,QUEENS,113,true,,,,18-24,F,WHITE
3,01/03/2021,BRONX,44,false,U,U,U,25-44,M,BLACK
"""

COVID_HEADER = "Province_State,Admin2,date,cases,deaths,Population\n"


@pytest.fixture(scope="module")
def shootings_config():
    return load_config(str(REPO_ROOT / "config" / "shootings.yaml"))


@pytest.fixture(scope="module")
def covid_config():
    return load_config(str(REPO_ROOT / "config" / "covid_us.yaml"))


@pytest.fixture(scope="module")
def shootings(shootings_config):
    """Full run over the shooting incident sample."""
    return run_pipeline(shootings_config, REPO_ROOT / "data" / "sample" / "shootings.csv")


@pytest.fixture(scope="module")
def covid(covid_config):
    """Full run over the COVID time-series sample."""
    return run_pipeline(covid_config, REPO_ROOT / "data" / "sample" / "covid_us.csv")


class TestShootingsPipeline:
    """Tests for the event-log dataset."""

    def test_records(self, shootings):
        """Test every input row survives with derived features."""
        records = shootings.records

        assert len(records) == 12
        assert records['day_offset'].min() == 0
        assert records['day_offset'].max() == 5
        assert shootings.raw['PERP_AGE_GROUP'].iloc[1] == ''

    def test_daily_buckets(self, shootings):
        """Test daily incident and murder counts."""
        daily = shootings.aggregates['daily']

        assert len(daily) == 6
        assert daily['day_offset'].tolist() == [0, 1, 2, 3, 4, 5]
        assert daily['incidents'].tolist() == [2, 2, 3, 1, 3, 1]
        assert daily['murders'].tolist() == [1, 0, 1, 1, 0, 1]
        assert daily['incidents'].sum() == len(shootings.records)

    def test_unknown_bucket(self, shootings):
        """Test empty, null, unknown and bad codes share one UNKNOWN bucket."""
        by_age = shootings.aggregates['by_perp_age'].set_index('PERP_AGE_GROUP')

        assert by_age.loc[UNKNOWN, 'incidents'] == 7
        assert '' not in by_age.index
        assert '1020' not in by_age.index

    def test_cumulative_by_borough(self, shootings):
        """Test each borough's running total ends at its incident count."""
        by_boro = shootings.aggregates['by_boro_date']
        finals = by_boro.groupby('BORO')['cumulative_incidents'].last().to_dict()

        assert finals == {
            'BRONX': 3, 'BROOKLYN': 4, 'MANHATTAN': 2, 'QUEENS': 2, 'STATEN ISLAND': 1
        }

    def test_day_of_week(self, shootings):
        """Test weekday buckets come out Sunday first."""
        by_day = shootings.aggregates['by_day_of_week']

        assert by_day['day_of_week'].iloc[0] == 'Sunday'
        assert by_day.set_index('day_of_week').loc['Friday', 'incidents'] == 2

    def test_model_and_predictions(self, shootings):
        """Test the trend is fit on daily buckets and evaluated on them."""
        assert shootings.model is not None
        assert shootings.model_error is None
        assert shootings.model.summary().n_obs == 6

        predictions = shootings.predictions
        assert len(predictions) == 6
        np.testing.assert_allclose(
            predictions['residual'], predictions['actual'] - predictions['predicted']
        )
        assert shootings.metrics['source'] == 'fit'


class TestCovidPipeline:
    """Tests for the cumulative time-series dataset."""

    def test_zero_population_excluded(self, covid):
        """Test zero-population regions get undefined ratios, not infinities."""
        totals = covid.aggregates['state_totals'].set_index('Province_State')

        assert np.isnan(totals.loc['Diamond Princess', 'cases_per_thou'])
        assert totals.loc['Diamond Princess', 'cases'] == 49
        assert np.isfinite(totals['deaths_per_thou'].dropna()).all()

    def test_model_skips_undefined(self, covid):
        """Test the fit uses only regions with defined ratios."""
        assert covid.model.summary().n_obs == 4
        assert len(covid.predictions) == 4

    def test_new_cases(self, covid):
        """Test daily new cases add up to the latest cumulative count."""
        by_state = covid.aggregates['by_state_date']
        alabama = by_state[by_state['Province_State'] == 'Alabama']

        assert alabama['new_cases'].tolist() == [1, 5, 8]
        assert alabama['new_cases'].sum() == 14

    def test_national_roll_up(self, covid):
        """Test the national series sums the state series per date."""
        us = covid.aggregates['us_by_date']

        assert len(us) == 3
        assert us['cases'].tolist() == [66, 107, 179]

    def test_blank_county_normalized(self, covid):
        """Test blank county names become UNKNOWN."""
        ship = covid.records[covid.records['Province_State'] == 'Diamond Princess']
        assert (ship['Admin2'] == UNKNOWN).all()


class TestPipelineControl:
    """Tests for phases, failures and export."""

    def test_degenerate_model_keeps_aggregates(self, shootings_config):
        """Test a flat predictor records the failure instead of aborting."""
        result = run_pipeline(shootings_config, io.StringIO(FLAT_CSV))

        assert result.model is None
        assert "zero variance" in result.model_error
        assert result.aggregates['daily']['incidents'].tolist() == [1, 1, 1]
        assert result.aggregates['by_perp_age'].set_index('PERP_AGE_GROUP').loc[UNKNOWN, 'incidents'] == 2

    def test_header_only_time_series(self, covid_config):
        """Test a time series with no rows yields empty aggregates and a recorded fit failure."""
        result = run_pipeline(covid_config, io.StringIO(COVID_HEADER))

        assert result.records.empty
        assert result.aggregates['state_totals'].empty
        assert 'cases_per_thou' in result.aggregates['state_totals'].columns
        assert 'new_cases' in result.aggregates['by_state_date'].columns
        assert result.model is None
        assert "two points" in result.model_error

    def test_header_only_events(self, shootings_config):
        """Test an event log with no rows yields empty aggregates and a recorded fit failure."""
        header = FLAT_CSV.splitlines()[0] + "\n"
        result = run_pipeline(shootings_config, io.StringIO(header))

        assert result.aggregates['daily'].empty
        assert result.model is None
        assert result.model_error is not None

    def test_negative_running_total_recorded(self, covid_config, tmp_path):
        """Test a downward correction skips only that running total."""
        corrected = COVID_HEADER + (
            "Alabama,Autauga,3/1/20,20,0,55869\n"
            "Alabama,Autauga,3/2/20,3,0,55869\n"
            "Alabama,Autauga,3/3/20,9,1,55869\n"
            "Colorado,Denver,3/1/20,3,0,727211\n"
            "Colorado,Denver,3/2/20,8,1,727211\n"
            "Colorado,Denver,3/3/20,15,1,727211\n"
            "Washington,King,3/1/20,12,2,2252782\n"
        )
        aggregates = dict(covid_config['aggregates'])
        aggregates['us_by_date'] = dict(
            aggregates['us_by_date'],
            cumulative={'order_by': 'event_date', 'value': 'new_cases',
                        'name': 'total_new_cases'}
        )
        config = dict(covid_config, aggregates=aggregates)

        result = run_pipeline(config, io.StringIO(corrected))

        assert list(result.aggregate_errors) == ['us_by_date']
        assert 'total_new_cases' not in result.aggregates['us_by_date'].columns
        assert len(result.aggregates['state_totals']) == 3
        assert result.model is not None

        paths = export_results(result, str(tmp_path))
        with open(paths['aggregate_errors']) as f:
            assert "negative" in json.load(f)['us_by_date']

    def test_malformed_input_aborts(self, shootings_config):
        """Test a malformed row aborts the run."""
        broken = FLAT_CSV + "4,01/04/2021,BRONX\n"

        with pytest.raises(ParseError):
            run_pipeline(shootings_config, io.StringIO(broken))

    def test_stop_after_phase(self, shootings_config):
        """Test a run can stop after aggregation."""
        result = run_pipeline(shootings_config, io.StringIO(FLAT_CSV), phase='aggregate')

        assert 'daily' in result.aggregates
        assert result.model is None
        assert result.model_error is None

    def test_stop_after_ingest(self, shootings_config):
        """Test an ingest-only run returns raw records."""
        result = run_pipeline(shootings_config, io.StringIO(FLAT_CSV), phase='ingest')

        assert len(result.raw) == 3
        assert result.records is None

    def test_unknown_phase(self, shootings_config):
        """Test an unknown phase is rejected."""
        with pytest.raises(ValueError, match="Unknown phase"):
            run_pipeline(shootings_config, io.StringIO(FLAT_CSV), phase='report')

    def test_unknown_model_source(self, shootings_config):
        """Test a model source must name an aggregate."""
        config = dict(shootings_config, model={'source': 'weekly', 'x': 'a', 'y': 'b'})

        with pytest.raises(ValueError, match="weekly"):
            run_pipeline(config, io.StringIO(FLAT_CSV))

    def test_export(self, shootings, tmp_path):
        """Test tables and summaries are written per dataset."""
        paths = export_results(shootings, str(tmp_path))

        for artifact in ['records', 'daily', 'by_boro_date', 'model_summary',
                         'predictions', 'metrics']:
            assert Path(paths[artifact]).exists()
        assert Path(paths['daily']).parent == tmp_path / 'nypd_shootings'

        daily = pd.read_csv(paths['daily'])
        assert daily['incidents'].sum() == 12

        with open(paths['model_summary']) as f:
            summary = json.load(f)
        assert summary['error'] is None
        assert summary['n_obs'] == 6

    def test_export_failed_model(self, shootings_config, tmp_path):
        """Test a failed fit is reported in the model summary."""
        result = run_pipeline(shootings_config, io.StringIO(FLAT_CSV))
        paths = export_results(result, str(tmp_path))

        with open(paths['model_summary']) as f:
            summary = json.load(f)
        assert "zero variance" in summary['error']
        assert 'predictions' not in paths


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

import json
import threading

from tunebridge.crosscutting.metrics import MetricsCollector, ResolutionMetrics


class TestResolutionMetrics:
    """Tests for derived metric values."""

    def test_match_rate_without_attempts(self):
        assert ResolutionMetrics().match_rate == 0.0

    def test_match_rate(self):
        metrics = ResolutionMetrics(matches_by_strategy={'isrc': 2, 'title': 1}, no_matches=1)

        assert metrics.total_matches == 3
        assert metrics.match_rate == 0.75


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def setup_method(self):
        self.collector = MetricsCollector()

    def test_records(self):
        self.collector.record_message(extracted_refs=3)
        self.collector.record_hydration_failure()
        self.collector.record_match('isrc')
        self.collector.record_match('isrc')
        self.collector.record_match('barcode')
        self.collector.record_no_match()
        self.collector.record_match_failure()
        self.collector.record_page()
        self.collector.record_pagination_failure()
        self.collector.record_shortlink_hop()
        self.collector.record_duration(120)

        metrics = self.collector.get_metrics()
        assert metrics.messages == 1
        assert metrics.extracted_refs == 3
        assert metrics.hydration_failures == 1
        assert metrics.matches_by_strategy == {'isrc': 2, 'barcode': 1}
        assert metrics.no_matches == 1
        assert metrics.match_failures == 1
        assert metrics.pages_fetched == 1
        assert metrics.pagination_failures == 1
        assert metrics.shortlink_hops == 1
        assert metrics.total_duration_ms == 120

    def test_timed_adds_duration(self):
        with self.collector.timed():
            pass

        assert self.collector.get_metrics().total_duration_ms >= 0

    def test_concurrent_updates(self):
        def work():
            for _ in range(500):
                self.collector.record_page()
                self.collector.record_match('title')

        threads = [threading.Thread(target=work) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        metrics = self.collector.get_metrics()
        assert metrics.pages_fetched == 2000
        assert metrics.matches_by_strategy == {'title': 2000}

    def test_to_dict_and_save(self, tmp_path):
        self.collector.record_match('isrc')
        self.collector.record_no_match()
        self.collector.finish()

        data = self.collector.to_dict()
        assert data['total_matches'] == 1
        assert data['match_rate'] == 0.5
        assert isinstance(data['start_time'], str)
        assert isinstance(data['end_time'], str)

        path = tmp_path / 'metrics.json'
        self.collector.save_to_file(str(path))
        assert json.loads(path.read_text())['matches_by_strategy'] == {'isrc': 1}

    def test_print_summary(self, capsys):
        self.collector.record_match('isrc')

        self.collector.print_summary()

        out = capsys.readouterr().out
        assert 'Resolution Metrics' in out
        assert 'isrc: 1' in out

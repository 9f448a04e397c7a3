import sys
from concurrent.futures import ThreadPoolExecutor
from PySide6.QtCore import Qt, QTimer
from PySide6.QtGui import QFont
from PySide6.QtWidgets import (
    QApplication,
    QDoubleSpinBox,
    QGridLayout,
    QHBoxLayout,
    QLabel,
    QListWidget,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QSpinBox,
    QVBoxLayout,
    QWidget,
)
from pt.common.logger import log
from pt.core import config
from pt.core.persistence import PersistenceAdapter
from pt.core.session import PreconditionViolation, SessionEngine
from pt.core.store import FileStore
from pt.util import epoch_millis, format_duration, format_quantity


# ---------------------------------------------------------------------------
# Main window
# ---------------------------------------------------------------------------

# Main window of the pill tracker. Shows the running clock, inventory counters and the dose log, and forwards
# button presses to the SessionEngine.
class MainWindow(QMainWindow):

    def __init__(self):
        super().__init__()
        self.setWindowTitle("Pill Tracker")

        # -- Settings --
        s = config.load_settings()
        self.settings = s
        self.tz = config.resolve_timezone(s["display_timezone"])
        if s["always_on_top"]:
            self.setWindowFlags(self.windowFlags() | Qt.WindowStaysOnTopHint)

        # -- Persistence (single worker keeps saves and clears in order) --
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pt-persist")
        self.adapter = PersistenceAdapter(FileStore(config.STORE_DIR), tz=self.tz, executor=self._executor)

        # -- Engine, restored from today's save if there is one --
        restored = self.adapter.restore(epoch_millis())
        self.engine = SessionEngine(
            tz=self.tz,
            default_inventory=s["initial_pill_count"],
            state=restored,
        )
        self.adapter.attach(self.engine)
        self.engine.subscribe(lambda _event, _state: self._refresh())

        self._build_ui()
        self._refresh()

        # -- Tick timer --
        self._timer = QTimer(self)
        self._timer.timeout.connect(self._tick)
        self._timer.start(s["tick_interval_ms"])

    # ------------------------------------------------------------------ #
    #  Layout                                                              #
    # ------------------------------------------------------------------ #

    def _build_ui(self):
        central = QWidget()
        self.setCentralWidget(central)
        lay = QVBoxLayout(central)

        self._clock_lbl = QLabel(format_duration(0, centis=True))
        self._clock_lbl.setFont(QFont("Arial", 32, QFont.Bold))
        self._clock_lbl.setAlignment(Qt.AlignCenter)
        lay.addWidget(self._clock_lbl)
        caption = QLabel("Time Elapsed")
        caption.setAlignment(Qt.AlignCenter)
        lay.addWidget(caption)

        stats = QGridLayout()
        self._taken_lbl = QLabel()
        self._remaining_lbl = QLabel()
        self._lap_lbl = QLabel()
        for col, (value_lbl, text) in enumerate((
                (self._taken_lbl, "Pills Taken"),
                (self._remaining_lbl, "Pills Left"),
                (self._lap_lbl, "Since Last Dose"))):
            value_lbl.setFont(QFont("Arial", 20, QFont.Bold))
            value_lbl.setAlignment(Qt.AlignCenter)
            name_lbl = QLabel(text)
            name_lbl.setAlignment(Qt.AlignCenter)
            stats.addWidget(value_lbl, 0, col)
            stats.addWidget(name_lbl, 1, col)
        lay.addLayout(stats)

        inputs = QHBoxLayout()
        inputs.addWidget(QLabel("Dose"))
        self._dose_spin = QDoubleSpinBox()
        self._dose_spin.setDecimals(2)
        self._dose_spin.setSingleStep(self.settings["dose_step"])
        self._dose_spin.setRange(self.settings["dose_step"], 1000)
        self._dose_spin.setValue(self.settings["default_dose"])
        inputs.addWidget(self._dose_spin)
        self._inventory_caption = QLabel("Pills on hand")
        inputs.addWidget(self._inventory_caption)
        self._inventory_spin = QSpinBox()
        self._inventory_spin.setRange(1, 100000)
        self._inventory_spin.setValue(self.engine.default_inventory)
        inputs.addWidget(self._inventory_spin)
        lay.addLayout(inputs)

        buttons = QHBoxLayout()
        self._start_btn = QPushButton("Start Tracking")
        self._start_btn.clicked.connect(self._on_start)
        self._dose_btn = QPushButton("+ Take Pill")
        self._dose_btn.clicked.connect(self._on_dose)
        self._pause_btn = QPushButton("Pause")
        self._pause_btn.clicked.connect(self._on_pause_toggle)
        self._reset_btn = QPushButton("Reset")
        self._reset_btn.clicked.connect(self._on_reset)
        for btn in (self._start_btn, self._dose_btn, self._pause_btn, self._reset_btn):
            buttons.addWidget(btn)
        lay.addLayout(buttons)

        self._log_list = QListWidget()
        lay.addWidget(self._log_list)

    # ------------------------------------------------------------------ #
    #  Button handlers                                                     #
    # ------------------------------------------------------------------ #

    def _on_start(self):
        self._guarded(self.engine.start, self._dose_spin.value(), self._inventory_spin.value())

    def _on_dose(self):
        self._guarded(self.engine.record_dose, self._dose_spin.value())

    def _on_pause_toggle(self):
        if self.engine.state.is_running:
            self._guarded(self.engine.pause)
        else:
            self._guarded(self.engine.resume)

    def _on_reset(self):
        if self.settings["confirm_reset"] and QMessageBox.question(
                self, "Confirm", "Clear today's doses and start over?"
        ) != QMessageBox.Yes:
            return
        self._guarded(self.engine.reset)

    # Engine rejections are expected from stray clicks, they just get logged.
    def _guarded(self, operation, *args):
        try:
            return operation(*args)
        except PreconditionViolation as e:
            log.info(f"Ignored {operation.__name__}: {e}")
            return None

    # ------------------------------------------------------------------ #
    #  Display                                                             #
    # ------------------------------------------------------------------ #

    def _refresh(self):
        state = self.engine.state
        started = state.started

        self._start_btn.setVisible(not started)
        self._inventory_caption.setVisible(not started)
        self._inventory_spin.setVisible(not started)
        self._dose_btn.setEnabled(started and state.is_running)
        self._pause_btn.setEnabled(started)
        self._pause_btn.setText("Pause" if state.is_running or not started else "Resume")

        self._taken_lbl.setText(format_quantity(state.total_taken))
        self._remaining_lbl.setText(format_quantity(state.remaining_inventory))
        self._lap_lbl.setText(format_duration(state.last_lap_ms))

        self._log_list.clear()
        for i in reversed(range(len(state.events))):
            event = state.events[i]
            self._log_list.addItem(
                f"#{event.sequence_number}  {format_quantity(event.pill_quantity)} pill(s)  "
                f"{event.display_timestamp}  (+{format_duration(state.lap_duration(i))}, "
                f"total {format_duration(state.total_time(i))})"
            )
        self._tick()

    def _tick(self):
        self._clock_lbl.setText(format_duration(self.engine.tick(), centis=True))

    # ------------------------------------------------------------------ #
    #  Window close                                                        #
    # ------------------------------------------------------------------ #

    def closeEvent(self, event):
        self._timer.stop()
        self.adapter.close()
        log.info("Window closed, persistence queue drained.")
        event.accept()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    app = QApplication(sys.argv)
    window = MainWindow()
    window.show()
    sys.exit(app.exec())

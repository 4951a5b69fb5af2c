from __future__ import annotations

INSTALL_MONITOR_SCRIPT = r"""
if (!window.__replay_monitor__) {
  const monitor = { pending: 0, mutations: 0, lastRequestAt: 0 };
  window.__replay_monitor__ = monitor;

  const started = () => {
    monitor.pending += 1;
    monitor.lastRequestAt = Date.now();
  };
  const settled = () => {
    monitor.pending = Math.max(0, monitor.pending - 1);
  };

  if (window.fetch) {
    const originalFetch = window.fetch.bind(window);
    window.fetch = (...args) => {
      started();
      return originalFetch(...args).finally(settled);
    };
  }

  const originalSend = XMLHttpRequest.prototype.send;
  XMLHttpRequest.prototype.send = function (...args) {
    started();
    this.addEventListener("loadend", settled, { once: true });
    return originalSend.apply(this, args);
  };

  const observeRoot = (root) => {
    const observer = new MutationObserver((mutations) => {
      monitor.mutations += mutations.length;
      for (const mutation of mutations) {
        if (mutation.type !== "childList") continue;
        for (const node of mutation.addedNodes) {
          if (node instanceof Element && node.shadowRoot) {
            observeRoot(node.shadowRoot);
          }
        }
      }
    });
    observer.observe(root, { attributes: true, childList: true, subtree: true, characterData: true });
  };

  observeRoot(document);
  for (const node of document.querySelectorAll("*")) {
    if (node.shadowRoot) {
      observeRoot(node.shadowRoot);
    }
  }
}
"""

READ_MONITOR_SCRIPT = """
const monitor = window.__replay_monitor__;
return monitor ? { pending: monitor.pending, mutations: monitor.mutations } : null;
"""


class DomMonitor:
    """Installs and reads the browser-side request and mutation counters.

    The counters live on the page, so a navigation drops them; ``read`` reinstalls
    the monitor whenever it finds the page without one.
    """

    def install(self, driver) -> None:
        driver.execute_script(INSTALL_MONITOR_SCRIPT)

    def read(self, driver) -> dict[str, int]:
        counters = driver.execute_script(READ_MONITOR_SCRIPT)
        if counters is None:
            self.install(driver)
            return {"pending": 0, "mutations": 0}
        return {"pending": int(counters["pending"]), "mutations": int(counters["mutations"])}

    def pending_requests(self, driver) -> int:
        return self.read(driver)["pending"]

    def mutation_count(self, driver) -> int:
        return self.read(driver)["mutations"]

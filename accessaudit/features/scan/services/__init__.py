"""
Scan Services

Organized by responsibility, in the order a scan runs through them:

1. admission/ - Gates in front of the shared browser capacity
   - counter_store.py: Atomic counters / sliding windows (Redis or in-memory)
   - admission_controller.py: Per-caller rate limit + global concurrency slots

2. browser/ - Browser automation (Selenium)
   - session.py: Launch/attach, stealth context, navigation, page primitives
   - screenshot.py: Viewport capture with blank-render retry

3. detection/ - Page classification
   - block_detector.py: WAF / bot-challenge page detection
   - platform_detector.py: CMS / platform fingerprinting (informational)

4. engine/ - Rule evaluation
   - axe_engine.py: axe-core injection behind the RuleEngine capability
   - escalation.py: Full -> Safe -> Minimal -> Empty state machine

5. analysis/ - Result reduction
   - result_reducer.py: Severity counts and payload truncation
   - grading.py: Versioned score / letter grade

6. scan/ - Orchestration
   - scanner.py: One scan attempt end to end
"""

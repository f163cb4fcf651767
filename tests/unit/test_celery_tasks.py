from docingest.ingestion.celery_tasks import celery_app, process_document_task, sweep_documents_task


def test_tasks_are_registered_under_stable_names():
    assert process_document_task.name == "docingest.ingestion.process_document"
    assert sweep_documents_task.name == "docingest.ingestion.sweep_documents"
    assert "docingest.ingestion.sweep_documents" in celery_app.tasks


def test_worker_configuration():
    conf = celery_app.conf

    assert conf.task_acks_late is True
    assert conf.worker_prefetch_multiplier == 1
    assert conf.beat_schedule["sweep-training-documents"]["task"] == "docingest.ingestion.sweep_documents"
